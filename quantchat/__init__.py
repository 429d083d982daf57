"""Quantized LLaMA Chat

Text generation driver for quantized llama-family checkpoints (GGUF and the
legacy GGML/GGJT containers) with one-shot, interactive and chat modes.
"""

__version__ = "0.1.0"
__author__ = "quantchat developers"
