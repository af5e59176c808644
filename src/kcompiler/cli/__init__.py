"""kcompiler command-line interface."""
