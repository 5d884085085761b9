"""Tests for the CLI and the serverless handler, with jobs stubbed out."""

import json

import pytest

from prnotify.__main__ import main
from prnotify.handler import lambda_handler
from prnotify.jobs import JOBS


def job_returning(result):
    async def job():
        return result

    return job


async def failing_job():
    raise ConnectionError("database unavailable")


class TestHandler:
    def test_defaults_to_dispatch(self, monkeypatch):
        monkeypatch.setitem(JOBS, "dispatch", job_returning({"executed": 2}))

        response = lambda_handler({}, None)

        assert response["statusCode"] == 200
        assert json.loads(response["body"]) == {"executed": 2}

    def test_named_job(self, monkeypatch):
        monkeypatch.setitem(JOBS, "refresh-tokens", job_returning({"refreshed": 1}))
        response = lambda_handler({"job": "refresh-tokens"}, None)
        assert json.loads(response["body"]) == {"refreshed": 1}

    def test_unknown_job(self):
        response = lambda_handler({"job": "reindex"}, None)
        assert response["statusCode"] == 400

    def test_failure(self, monkeypatch):
        monkeypatch.setitem(JOBS, "dispatch", failing_job)

        response = lambda_handler(None, None)

        assert response["statusCode"] == 500
        assert "database unavailable" in json.loads(response["body"])["error"]


class TestCli:
    def test_prints_result(self, monkeypatch, capsys):
        monkeypatch.setitem(JOBS, "migrate", job_returning({"applied": ["001_initial_schema"]}))

        assert main(["migrate"]) == 0
        assert json.loads(capsys.readouterr().out) == {"applied": ["001_initial_schema"]}

    def test_failure_exit_code(self, monkeypatch):
        monkeypatch.setitem(JOBS, "dispatch", failing_job)
        assert main(["dispatch"]) == 1

    def test_job_is_required(self):
        with pytest.raises(SystemExit):
            main([])
