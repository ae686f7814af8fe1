"""Shared fixtures for browser action engine tests."""

import os

import pytest

from fakes import FakePage, FakeProvider, make_raw_node

# Keep a developer's .env or shell settings out of the tests
for _key in [key for key in os.environ if key.startswith("SAZEN_")]:
    os.environ.pop(_key)

APP_URL = "https://app.test/"
NEXT_URL = "https://app.test/next?step=2"


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring a real browser"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def build_pages() -> dict[str, FakePage]:
    """A two-page app: a form page with a submit button and a link to a result page."""
    return {
        APP_URL: FakePage(
            url=APP_URL,
            title="Checkout",
            nodes=[
                make_raw_node(
                    "n1",
                    stableRef="testid:submit",
                    name="Submit order",
                    text="Submit order",
                    attributes={"data-testid": "submit", "id": "submit"},
                ),
                make_raw_node(
                    "n2",
                    tag="input",
                    role="textbox",
                    name="Email",
                    text="",
                    editable=True,
                    stableRef="name:email",
                    attributes={"name": "email", "type": "email"},
                ),
                make_raw_node(
                    "n3",
                    tag="a",
                    role="link",
                    name="Next step",
                    text="Next step",
                    stableRef="href:/next",
                    attributes={"href": "/next"},
                ),
            ],
        ),
        NEXT_URL: FakePage(
            url=NEXT_URL,
            title="Done",
            nodes=[
                make_raw_node(
                    "n4",
                    tag="div",
                    role="status",
                    name="Order placed",
                    text="Order placed",
                    interactive=False,
                    stableRef="id:result",
                    attributes={"id": "result", "class": "banner success"},
                ),
            ],
        ),
    }


def go_next(provider: FakeProvider) -> None:
    provider.current = provider.pages[NEXT_URL]


@pytest.fixture
def app_url():
    return APP_URL


@pytest.fixture
def next_url():
    return NEXT_URL


@pytest.fixture
def provider_factory():
    """Factory for fresh providers serving the same two-page app."""
    def factory() -> FakeProvider:
        provider = FakeProvider(pages=build_pages())
        provider.on_click["testId:submit"] = go_next
        return provider
    return factory


@pytest.fixture
def fake_provider(provider_factory):
    return provider_factory()


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated to the test's temporary directory."""
    from sazen.config import Settings

    return Settings(
        _env_file=None,
        sessions_dir=str(tmp_path / "sessions"),
        artifacts_dir=str(tmp_path / "artifacts"),
    )


@pytest.fixture
def session_options(tmp_path):
    """Fast, screenshot-free session options for pipeline tests."""
    from sazen.config import SessionOptions

    return SessionOptions(
        stability_profile="fast",
        stable_wait_ms=0,
        action_timeout_ms=2_000,
        capture_screenshots=False,
        artifacts_dir=str(tmp_path / "artifacts"),
    )


@pytest.fixture
def make_session(fake_provider, session_options, test_settings):
    """Build an AgentSession over the fake provider; options may be overridden."""
    from sazen.session import AgentSession

    def factory(provider=None, **overrides) -> AgentSession:
        options = session_options.merged(**overrides) if overrides else session_options
        return AgentSession(options, provider=provider or fake_provider, settings=test_settings)
    return factory


@pytest.fixture
def node_factory():
    """Build snapshot Nodes from raw-walk defaults plus overrides."""
    from sazen.snapshot.models import Node

    def factory(node_id: str, **overrides) -> Node:
        return Node.from_dict(make_raw_node(node_id, **overrides))
    return factory


@pytest.fixture
def snapshot_factory(node_factory):
    """Build a Snapshot from Nodes (or node ids)."""
    from sazen.snapshot.models import Snapshot, Viewport

    def factory(nodes, url: str = APP_URL, title: str = "Checkout"):
        built = [node_factory(node) if isinstance(node, str) else node for node in nodes]
        return Snapshot.build(url=url, title=title, viewport=Viewport(1440, 920), nodes=built)
    return factory
