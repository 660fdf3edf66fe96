"""Fractal series audio effect with an exact inverse: block DSP, parameters and a streaming processor."""

__version__ = "0.2.0"
__all__ = ["dsp", "parameters", "processor"]