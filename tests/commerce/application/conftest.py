import pytest
import requests


class FakeResponse:
    def __init__(self, body, status_code=200):
        self._body = body
        self.status_code = status_code

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Stands in for ``requests.Session``; replies from a queue and records calls."""

    def __init__(self):
        self.calls = []
        self.responses = []

    def reply(self, body, status_code=200):
        self.responses.append(FakeResponse(body, status_code))
        return self

    def fail(self, exc):
        self.responses.append(exc)
        return self

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def http_session():
    return FakeSession()
