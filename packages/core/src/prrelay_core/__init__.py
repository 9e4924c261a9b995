"""Pull-request diff extraction and review delivery."""
