from __future__ import annotations


class RelgraphError(Exception):
    pass


class ConfigInvalid(RelgraphError, ValueError):
    pass


class NotFoundError(RelgraphError, LookupError):
    def __init__(self, entity: str, uid: str):
        super().__init__(f"No record found for {entity} with id {uid}")
        self.entity = entity
        self.uid = uid


class SourceError(RelgraphError):
    """Transport-level failure reported by a data source."""


class SamplingUnavailable(SourceError):
    pass


class PartialFetchFailure(RelgraphError):
    """A relation's children could not be fetched.

    Recorded on the graph as a warning; never raised out of a build.
    """

    def __init__(self, *, entity: str, uid: str, relation: str, cause: BaseException):
        super().__init__(f"Failed to load relationship {relation} for {entity}:{uid}: {cause}")
        self.entity = entity
        self.uid = uid
        self.relation = relation
        self.cause = cause
