class VolparError(Exception):
    """Base class for errors raised by volpar."""


class MalformedGeometryError(VolparError, ValueError):
    """Position or index buffers do not describe a list of triangles."""


class DegenerateProjectionError(VolparError, ValueError):
    """Projection direction is parallel to the projection plane."""


class SessionAlreadyActiveError(VolparError, RuntimeError):
    """A fill session was started while another one is still filling."""


class FillExhaustedError(VolparError, RuntimeError):
    """A fill session used up its candidate attempts without reaching its target.

    A volume with positions but no triangles accepts nothing, so filling it ends here.
    """
