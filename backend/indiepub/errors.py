"""
Micropub protocol errors.

These are expected failures (bad token, bad request) that the endpoint
answers with a 4xx and an OAuth-style JSON body. Anything else that escapes
a handler is turned into a 500 at the outermost boundary.
"""

from indiepub.models.http import CanonicalResponse, json_response


class MicropubError(Exception):
    def __init__(self, status_code: int, error: str, description: str = ""):
        super().__init__(description or error)
        self.status_code = status_code
        self.error = error
        self.description = description

    def to_response(self) -> CanonicalResponse:
        payload = {"error": self.error}
        if self.description:
            payload["error_description"] = self.description
        return json_response(self.status_code, payload)


def invalid_request(description: str) -> MicropubError:
    return MicropubError(400, "invalid_request", description)


def unauthorized(description: str = "Missing access token") -> MicropubError:
    return MicropubError(401, "unauthorized", description)


def forbidden(description: str) -> MicropubError:
    return MicropubError(403, "forbidden", description)


def insufficient_scope(scope: str) -> MicropubError:
    return MicropubError(403, "insufficient_scope", f"Token is missing the '{scope}' scope")
