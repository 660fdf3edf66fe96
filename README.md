# bifractalizer

An audio effect that cuts a signal into blocks of one period and replaces
each block `g` with a fractal series

    f(x) = sum over n of alpha**n * g({beta**n * x})

where `{.}` is the fractional part. The inverse operation ("defractalize")
recovers `g` from `f` by solving a sparse linear system, so a signal can be
fractalized and then restored.

## Installation

    pip install .

For running the tests:

    pip install .[test]
    pytest

## Working on single blocks

The functions in `bifractalizer.dsp` act on NumPy arrays shaped
`(channels, samples)` or on a single block of samples:

```python
import numpy as np
from bifractalizer.dsp import (
    linspace, series_coefficients, fractalize,
    defractalizer_matrix, factorize, defractalize,
)

n = 512
beta_pow_n, weights = series_coefficients(alpha=0.5, beta=2)
grid = linspace(0.0, 1.0, n, False)

g = np.random.default_rng(0).uniform(-1, 1, (2, n)).astype(np.float32)
f = fractalize(grid, g, beta_pow_n, weights, len(weights))

matrix = defractalizer_matrix(beta_pow_n, weights, n, len(weights))
restored = defractalize(f, factorize(matrix))
```

- `series_coefficients(alpha, beta)` returns the powers `beta**n` and the
  weights `alpha**n`, with as many terms as it takes for `beta**n` to pass one
  million. `beta` must be greater than 1.
- `defractalizer_matrix` builds a SciPy sparse matrix; `factorize` returns its
  sparse LU factorization.
- `factorize` and `defractalize` raise `SolverError` (a `RuntimeError`) when the
  system cannot be factorized or its solution is not finite.
- `fade_in` and `fade_out` return a copy multiplied by a cosine ramp;
  `closest_power_of_2(x)` returns the nearest power of two (the lower one on a
  tie, 0 for `x <= 0`).

## Streaming audio

`bifractalizer.processor.AudioProcessor` handles audio arriving in host
blocks of any size. It regroups samples into blocks whose length is the
sample rate divided by the `frequency` parameter, shifted by the
`blockOffset` phase, processes them, and hands them back with a fixed
latency (`latency_samples`):

```python
import numpy as np
from bifractalizer.processor import AudioProcessor

proc = AudioProcessor(2)
proc.parameters["frequency"] = 93.8
proc.parameters["alpha"] = 0.5
proc.parameters["beta"] = 2
proc.prepare_to_play(48000, 512)

host_block = np.zeros((2, 512), dtype=np.float32)
out = proc.process_block(host_block)   # a new (2, 512) float32 array
```

- `process_block` returns the processed block and leaves its argument alone.
  It must be called after `prepare_to_play`.
- Setting `proc.bypass = True` passes blocks through unchanged, apart from the
  latency and the gain.
- When the block size, offset or host block size changes, the output is faded
  out, muted for a few blocks and faded back in to avoid clicks.
- `block_size()`, `block_offset()` and `gain()` report the current settings in
  samples and as a linear factor.
- `is_layout_supported(input_channels, output_channels)` accepts mono or
  stereo with matching input and output.
- `release_resources()` silences the internal buffers.
- `get_state()` returns the parameters as UTF-8 XML bytes; `set_state(data)`
  restores them and returns `False` if the data could not be read.

## Parameters

`bifractalizer.parameters.create_parameters()` returns the parameter
definitions (`FloatParameter`, `IntParameter`, `ChoiceParameter`), each with a
`snap(value)` method giving the nearest legal value. `Parameters` holds the
current values by id:

| id            | range           | default       |
|---------------|-----------------|---------------|
| `frequency`   | 20 – 350 Hz     | 93.8          |
| `blockOffset` | 0 – 1           | 0.0           |
| `mode`        | `Mode` choice   | `FRACTALIZER` |
| `gain`        | -24 – 24 dB     | 0.0           |
| `alpha`       | 0 – 0.9         | 0.5           |
| `beta`        | 2 – 8 (integer) | 2             |

Assigning a value keeps it inside the parameter's range (NaN raises
`ValueError`; an unknown id raises `KeyError`). `Parameters.to_xml()` saves
the values and `Parameters.load_xml()` restores them, snapping each to its
step and ignoring unknown ids.

## What it does not do

The package processes arrays only. It has no graphical editor, no command
line program, no audio file reading or writing, and no connection to an audio
device or plugin host; feeding it audio and playing the result is left to the
caller.