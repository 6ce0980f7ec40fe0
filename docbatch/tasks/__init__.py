"""DOCBATCH Tasks — step table, output layout and task definitions."""
