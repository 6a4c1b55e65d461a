"""coco: watches source files and streams AI commentary beside the code."""

__version__ = "0.3.0"
