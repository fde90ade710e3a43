from __future__ import annotations


class ConversionError(Exception):
    """Base class for everything that aborts a single conversion."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class MalformedSource(ConversionError):
    pass


class MissingRequiredAttribute(ConversionError):
    def __init__(self, path: str, attribute: str):
        super().__init__(path, f"missing required attribute '{attribute}'")
        self.attribute = attribute


class UnresolvableNameCollision(ConversionError):
    def __init__(self, scope: str, name: str):
        super().__init__(scope, f"'{name}' names two different entities")
        self.scope = scope
        self.name = name


class UnrepresentableModel(ConversionError):
    pass
