"""DOCBATCH State — record stores and the task state machine."""
