"""Textual stylesheets shipped with ChromaSort."""
