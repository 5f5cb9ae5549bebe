"""Measurement core for hzbench.

Times small units of work against a clock of known resolution, sizes
each cycle so that timer quantization stays below a target relative
error, and turns the resulting samples into rates with a margin of
error that can be compared across cases.
"""
