"""
DOCBATCH Planning — Classification and Batch Packing

FileRecords in, BatchResults out. No file content is retained.
"""
