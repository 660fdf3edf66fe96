"""Block-based audio processor that fractalizes or defractalizes a stream.

Incoming audio is cut into blocks whose length is set by the ``frequency``
parameter (one block per period) and shifted by the ``blockOffset`` phase.
Each full block is transformed and written into a ring buffer from which the
host blocks are read back, so the processor adds a fixed latency.
"""

from __future__ import annotations

import math

import numpy as np

from bifractalizer import dsp
from bifractalizer.parameters import Mode, Parameters

_MINUS_INFINITY_DB = -100.0


def _round_half_away(value):
    """Round a non-negative number to the nearest integer, halves upwards."""
    return int(math.floor(float(value) + 0.5))


def _decibels_to_gain(decibels):
    if decibels > _MINUS_INFINITY_DB:
        return float(np.float32(10.0 ** (decibels * 0.05)))
    return 0.0


def _apply_gain_ramp(samples, start, end):
    """Multiply by a gain moving linearly from ``start`` towards ``end``."""
    if start == end:
        return samples if start == 1.0 else samples * np.float32(start)
    n = samples.shape[-1]
    step = np.float32((end - start) / n)
    gains = np.float32(start) + step * np.arange(n, dtype=np.float32)
    return samples * gains


def _output_size(host_block_size, block_size, block_offset):
    blocks = -(-host_block_size // block_size)
    if host_block_size % block_size:
        blocks += 1
    return blocks * block_size + block_offset


class AudioProcessor:
    """Streaming fractalizer with click-free reconfiguration."""

    name = "Bifractalizer"
    tail_length_seconds = 0.0

    def __init__(self, num_channels=2):
        if num_channels <= 0:
            raise ValueError(f"number of channels must be positive, got {num_channels}")
        self.num_channels = num_channels
        self.parameters = Parameters()
        self.bypass = False
        self.sample_rate = None
        self.latency_samples = 0

        self._input = np.zeros((num_channels, 0), dtype=np.float32)
        self._output = np.zeros((num_channels, 0), dtype=np.float32)
        self._in_pos = 0
        self._read_pos = 0
        self._write_pos = 0
        self._prev_block_offset = -1
        self._prev_host_block_size = 0
        self._previous_gain = 1.0
        self._buffers_to_update = 0
        self._pending_update = 0

        self._processing_n = -1
        self._x_grid = np.empty(0, dtype=np.float32)
        self._prev_alpha = np.float32(0.5)
        self._prev_beta = 2
        self._beta_pow_n, self._weights = dsp.series_coefficients(self._prev_alpha, self._prev_beta)
        self._max_terms = len(self._beta_pow_n)
        self._solver = None
        self._solver_current = False

    # ------------------------------------------------------------ parameters

    def _raw(self, key):
        return np.float32(self.parameters[key])

    def _require_rate(self):
        if self.sample_rate is None:
            raise RuntimeError("processor has not been prepared to play")
        return self.sample_rate

    def block_size(self):
        """Length in samples of one processing block."""
        return _round_half_away(self._require_rate() / float(self._raw("frequency")))

    def block_offset(self):
        """Phase shift of the block grid, in samples."""
        size = self.block_size()
        product = np.float32(size) * self._raw("blockOffset")
        return _round_half_away(product) % size

    def gain(self):
        """Output gain as a linear factor."""
        return _decibels_to_gain(float(self._raw("gain")))

    def is_layout_supported(self, input_channels, output_channels):
        """Accept mono or stereo output with a matching input."""
        return output_channels in (1, 2) and input_channels == output_channels

    # --------------------------------------------------------------- set-up

    def _coefficients_changed(self):
        return (self._raw("alpha") != self._prev_alpha
                or int(self._raw("beta")) != self._prev_beta)

    def _update_coefficients(self):
        alpha = self._raw("alpha")
        beta = int(self._raw("beta"))
        self._beta_pow_n, self._weights = dsp.series_coefficients(alpha, beta)
        self._max_terms = len(self._beta_pow_n)
        self._prev_alpha = alpha
        self._prev_beta = beta
        self._solver_current = False

    def _update_buffers(self, host_block_size):
        self._in_pos = self.block_offset()
        self._prev_block_offset = self._in_pos
        size = self.block_size()
        out_size = _output_size(host_block_size, size, self._in_pos)

        self._input = np.zeros((self.num_channels, size), dtype=np.float32)
        self._output = np.zeros((self.num_channels, out_size), dtype=np.float32)

        self._read_pos = 0
        if host_block_size % (out_size - self._in_pos) == 0:
            self._write_pos = self._read_pos
        else:
            self._write_pos = (self._read_pos + size) % out_size

        previous_n = self._processing_n
        self._processing_n = size
        self._prev_host_block_size = host_block_size
        self.latency_samples = self._write_pos

        if previous_n != size:
            self._x_grid = dsp.linspace(0.0, 1.0, size, False)
            self._solver_current = False

    def prepare_to_play(self, sample_rate, samples_per_block):
        """Reset the stream for a sample rate and a host block size."""
        if sample_rate <= 0:
            raise ValueError(f"sample rate must be positive, got {sample_rate}")
        if samples_per_block <= 0:
            raise ValueError(f"block size must be positive, got {samples_per_block}")
        self.sample_rate = float(sample_rate)
        self._read_pos = 0
        self._output.fill(0.0)
        self._prev_block_offset = -1
        self._processing_n = -1
        self._update_coefficients()
        self._update_buffers(samples_per_block)

    def release_resources(self):
        """Silence every internal buffer."""
        self._input.fill(0.0)
        self._output.fill(0.0)

    # ----------------------------------------------------------- processing

    def _prepare_defractalizer(self):
        matrix = dsp.defractalizer_matrix(
            self._beta_pow_n, self._weights, self._processing_n, self._max_terms)
        self._solver = dsp.factorize(matrix)
        self._solver_current = True

    def _process_custom_block(self):
        n = self._processing_n
        block = self._input[:, :n].copy()
        if self.bypass:
            processed = block
        elif self.parameters["mode"] == Mode.FRACTALIZER:
            processed = dsp.fractalize(
                self._x_grid, block, self._beta_pow_n, self._weights, self._max_terms)
        else:
            if not self._solver_current:
                self._prepare_defractalizer()
            processed = dsp.defractalize(block, self._solver)
        self._input[:, :n] = processed

        size = self._input.shape[1]
        out_size = self._output.shape[1]
        positions = (self._write_pos + np.arange(size)) % out_size
        self._output[:, positions] = self._input

    def process_block(self, buffer):
        """Process one host block of shape ``(channels, samples)`` and return it."""
        self._require_rate()
        samples = np.array(buffer, dtype=np.float32)
        if samples.ndim != 2 or samples.shape[0] != self.num_channels:
            raise ValueError(
                f"expected a buffer of {self.num_channels} channels, got shape {samples.shape}")
        host = samples.shape[1]
        if host == 0:
            raise ValueError("buffer holds no samples")

        if self._coefficients_changed():
            self._update_coefficients()

        size = self.block_size()
        offset = self.block_offset()
        out_size = _output_size(host, size, offset)

        pending_before = self._pending_update
        if self._pending_update:
            # Reconfiguration is delayed by one host block to fade cleanly.
            self._update_buffers(host)
            self._pending_update = 0

        if (size != self._input.shape[1]
                or out_size != self._output.shape[1]
                or self._prev_block_offset != offset
                or self._prev_host_block_size != host):
            self._pending_update = 1 + pending_before
            self._buffers_to_update = size // host + 3

        size = self._input.shape[1]
        out_size = self._output.shape[1]

        position = 0
        while position < host:
            count = min(size - self._in_pos, host - position)
            self._input[:, self._in_pos:self._in_pos + count] = samples[:, position:position + count]
            position += count
            self._in_pos += count
            if self._in_pos == size:
                self._process_custom_block()
                self._write_pos = (self._write_pos + size) % out_size
                self._in_pos = 0

        positions = (self._read_pos + np.arange(host)) % out_size
        result = self._output[:, positions]
        self._read_pos = (self._read_pos + host) % out_size

        target = self.gain()
        result = _apply_gain_ramp(result, self._previous_gain, target)
        self._previous_gain = target

        if self._buffers_to_update:
            if self._pending_update >= 1:
                result = dsp.fade_out(result)
            if self._buffers_to_update == 1 or self._pending_update > 1:
                result = dsp.fade_in(result)
            if self._buffers_to_update > 1 and self._pending_update == 0:
                result = np.zeros_like(result)
            self._buffers_to_update -= 1

        return result.astype(np.float32, copy=False)

    # ---------------------------------------------------------------- state

    def get_state(self):
        """Return the parameter values as an XML document in bytes."""
        return self.parameters.to_xml().encode("utf-8")

    def set_state(self, data):
        """Restore parameters saved by :meth:`get_state`.

        Unreadable data is ignored; the return value tells whether it was used.
        """
        try:
            text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else str(data)
            self.parameters.load_xml(text)
        except ValueError:
            return False
        return True