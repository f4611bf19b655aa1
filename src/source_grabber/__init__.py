"""Mirror a web page's build output and recover its original sources."""

from .consumer import GrabReport, GrabState, RootFetchError, SourceGrabber, grab_site, run_grabber
from .workflows.grabber_config import GrabberConfig, build_config

__version__ = "0.1.0"

__all__ = [
    "GrabReport",
    "GrabState",
    "GrabberConfig",
    "RootFetchError",
    "SourceGrabber",
    "build_config",
    "grab_site",
    "run_grabber",
]
