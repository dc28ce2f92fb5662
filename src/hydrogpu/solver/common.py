"""Device source shared by every scheme and equation.

Defines the layout helpers kernels use (axis-to-dimension mapping,
neighbour access, interior slices) and the flux-divergence kernel.
Neighbour access wraps around the grid; only interior cells are ever
written from wrapped values, and ghost cells are refreshed by the
boundary kernels.
"""

COMMON_SOURCE = '''
# --- common ---
SIZE = (SIZE_X, SIZE_Y, SIZE_Z)
DX_AXIS = (DX, DY, DZ)
AXIS_DIM = (2, 1, 0)


def _interior_slices():
    slices = []
    for axis in (2, 1, 0):
        if axis < DIM:
            slices.append(slice(NUM_GHOST, SIZE[axis] - NUM_GHOST))
        else:
            slices.append(slice(None))
    return tuple(slices)


INTERIOR = _interior_slices()


def shift(q, axis, offset):
    """Value of ``q`` at (cell index + offset) along ``axis``."""
    return torch.roll(q, shifts=-offset, dims=AXIS_DIM[axis])


def interface_average(q, axis):
    """Arithmetic mean at the interface on the min side of each cell."""
    return 0.5 * (shift(q, axis, -1) + q)


def central_difference(q, axis):
    return (shift(q, axis, 1) - shift(q, axis, -1)) / (2.0 * DX_AXIS[axis])


@kernel
def calc_flux_deriv(deriv, flux):
    """Accumulate -div(flux) into ``deriv`` on interior cells.

    ``flux[..., axis, :]`` holds the flux through the min-side interface
    of each cell.
    """
    total = torch.zeros_like(deriv)
    for axis in range(DIM):
        f = flux[..., axis, :]
        total -= (shift(f, axis, 1) - f) / DX_AXIS[axis]
    deriv[INTERIOR] += total[INTERIOR]
'''
