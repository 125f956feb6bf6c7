"""Serialization of numerical primitives that share process-global state."""

import threading

# Held around neighbour search, Leiden and UMAP. These reach numba-compiled
# code and process-wide RNGs, so concurrent section branches must take turns
# for a seeded run to give the same result as a serial one.
seeded_primitive_lock = threading.RLock()
