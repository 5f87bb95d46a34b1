import os
import sys

import pytest

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)
TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
if TESTS_DIR not in sys.path:
    sys.path.insert(0, TESTS_DIR)

import grit_config as gc  # noqa: E402
import grit_tui as gt  # noqa: E402
from helpers import FakeLLM, Harness, RecordingClient, make_issues  # noqa: E402


@pytest.fixture
def cfg():
    return gc.parse_config({
        'project': {'owner': 'acme', 'repo': 'widgets', 'labels': ['bug', 'feature']},
    }, root='/tmp/acme')


@pytest.fixture
def client():
    return RecordingClient('acme', 'widgets', issues=make_issues(25))


@pytest.fixture
def opened():
    return []


@pytest.fixture
def deps(cfg, client, opened):
    return gt.Dependencies(config=cfg, github=client, llm=None, open_url=opened.append)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def llm_deps(cfg, client, llm):
    return gt.Dependencies(config=cfg, github=client, llm=llm, open_url=lambda url: None)


@pytest.fixture
def harness(deps):
    h = Harness(deps)
    h.run()
    return h
