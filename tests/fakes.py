"""Fake GraphQL upstream served through httpx.MockTransport."""
import json

import httpx

ENDPOINT = "http://graphql.example/api"


class FakeUpstream:
    """Answers GraphQL POSTs from a {query: payload} table and records requests."""

    def __init__(self, answers=None):
        self.answers = dict(answers or {})
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request, body))
        answer = self.answers.get(body["query"])
        if answer is None:
            return httpx.Response(200, json={"data": None, "errors": [{"message": "unknown query"}]})
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))
