"""Errors raised by the reconciliation core."""


class InvalidSpecError(ValueError):
    """The Instance declares a value that cannot be turned into a resource."""


class ReconcileError(Exception):
    """One or more dependent kinds failed to converge.

    ``failures`` maps each failed kind to the exception it raised and
    ``result`` holds the outcomes of the kinds that did converge, so the
    caller can report partial progress before retrying.
    """

    def __init__(self, name, namespace, failures, result=None):
        self.name = name
        self.namespace = namespace
        self.failures = dict(failures)
        self.result = result
        kinds = ", ".join(str(kind) for kind in self.failures)
        super().__init__(f"Reconcile of {namespace}/{name} failed for: {kinds}")

    @property
    def permanent(self):
        """True when retrying cannot help until the Instance spec changes."""
        return all(isinstance(e, InvalidSpecError) for e in self.failures.values())

    def details(self):
        return "; ".join(f"{kind}: {error}" for kind, error in self.failures.items())
