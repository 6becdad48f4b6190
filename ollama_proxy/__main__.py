#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Entry point for running the package directly with python -m.

Usage Examples:
    python -m ollama_proxy serve
    python -m ollama_proxy select llama2:70b
    python -m ollama_proxy --help
"""

from .main import main

if __name__ == "__main__":
    main()
