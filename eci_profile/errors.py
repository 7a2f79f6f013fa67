"""Exception types raised across the ECI profile service."""


class ProfileError(Exception):
    """Base class for every error raised by this package."""


class CacheLookupError(ProfileError, LookupError):
    """A list or get against the resource cache failed."""


class DecodeError(ProfileError, ValueError):
    """An AdmissionReview or its embedded Pod could not be decoded."""


class SelectorConfigError(ProfileError, ValueError):
    """A Selector carries a malformed label predicate."""


class PatchApplyError(ProfileError):
    """Patching a Pod through the API server failed."""


class BootstrapError(ProfileError):
    """Startup could not complete; the process must exit."""


class PolicyNotImplementedError(ProfileError, NotImplementedError):
    """The selected policy has no executor behaviour."""
