from __future__ import annotations

from pathlib import Path

import pytest

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from _fakes import DIAMOND_NAME, load_config  # noqa: E402
from diamonds.infra.errors import CallbackNotFoundError, ConfigurationInvalidError  # noqa: E402
from diamonds.orchestration.callbacks import (  # noqa: E402
    CallbackArgs,
    CallbackDispatcher,
    CallbackRegistry,
    load_callback_modules,
)

BASE = CallbackArgs(diamond_name=DIAMOND_NAME, network="localhost", chain_id=31337, deployment_id="examplediamond-localhost-31337")


def test_registry_lookup_errors() -> None:
    reg = CallbackRegistry()
    reg.register("ERC20Facet", {"callbackMint": lambda a: None})

    with pytest.raises(CallbackNotFoundError, match="No callbacks found for facet"):
        reg.get("OwnershipFacet", "callbackX")
    with pytest.raises(CallbackNotFoundError, match="Callback not found"):
        reg.get("ERC20Facet", "callbackBurn")

    assert reg.names("ERC20Facet") == ["callbackMint"]
    reg.clear()
    assert reg.names("ERC20Facet") == []


def test_registration_is_validated() -> None:
    reg = CallbackRegistry()
    with pytest.raises(ConfigurationInvalidError):
        reg.register("", {"callbackMint": lambda a: None})
    with pytest.raises(ConfigurationInvalidError):
        reg.register("ERC20Facet", {"callbackMint": "not callable"})  # type: ignore[dict-item]

    fn = lambda a: None  # noqa: E731
    reg.register("ERC20Facet", {"callbackMint": fn})
    reg.register("ERC20Facet", {"callbackMint": fn})
    with pytest.raises(ConfigurationInvalidError):
        reg.register("ERC20Facet", {"callbackMint": lambda a: None})


def test_missing_callbacks() -> None:
    config = load_config(
        {
            "protocolVersion": 1,
            "protocolCallback": "callbackProtocol",
            "facets": {"ERC20Facet": {"versions": {"1": {"callbacks": ["callbackMint", "callbackList"]}}}},
        }
    )
    reg = CallbackRegistry()
    reg.register("ERC20Facet", {"callbackMint": lambda a: None})
    assert reg.missing(config, diamond_name=DIAMOND_NAME) == [
        ("ERC20Facet", "callbackList"),
        (DIAMOND_NAME, "callbackProtocol"),
    ]


def test_dispatcher_runs_in_order_and_collects_remediation() -> None:
    calls = []
    reg = CallbackRegistry()
    reg.register("OwnershipFacet", {"callbackA": lambda a: calls.append(("OwnershipFacet", "callbackA", a.version))})
    reg.register(
        "ERC20Facet",
        {
            "callbackFail": lambda a: 1 / 0,
            "callbackB": lambda a: calls.append(("ERC20Facet", "callbackB", a.version)),
        },
    )
    reg.register(DIAMOND_NAME, {"callbackProtocol": lambda a: calls.append((a.facet_name, "callbackProtocol", a.version))})

    items = CallbackDispatcher(reg).run(
        BASE,
        [
            ("OwnershipFacet", 1, ["callbackA"]),
            ("ERC20Facet", 2, ["callbackFail", "callbackMissing", "callbackB"]),
        ],
        protocol_callback="callbackProtocol",
    )

    assert calls == [
        ("OwnershipFacet", "callbackA", 1),
        ("ERC20Facet", "callbackB", 2),
        (DIAMOND_NAME, "callbackProtocol", None),
    ]
    assert [(i.facet_name, i.callback_name, i.kind) for i in items] == [
        ("ERC20Facet", "callbackFail", "failed"),
        ("ERC20Facet", "callbackMissing", "not_found"),
    ]
    assert "division by zero" in items[0].message


def test_load_callback_modules(tmp_path: Path) -> None:
    (tmp_path / "ERC20Facet.py").write_text(
        "from os.path import join as callbackImported\n"
        "\n"
        "def callbackMint(args):\n"
        "    return args.facet_name\n"
        "\n"
        "def helper(args):\n"
        "    return None\n",
        encoding="utf-8",
    )
    (tmp_path / "_shared.py").write_text("def callbackHidden(args):\n    return None\n", encoding="utf-8")
    (tmp_path / "NoCallbacks.py").write_text("X = 1\n", encoding="utf-8")

    found = load_callback_modules(tmp_path)
    assert sorted(found) == ["ERC20Facet"]
    assert sorted(found["ERC20Facet"]) == ["callbackMint"]

    reg = CallbackRegistry()
    for facet, fns in found.items():
        reg.register(facet, fns)
    assert reg.get("ERC20Facet", "callbackMint")(BASE) == ""

    with pytest.raises(ConfigurationInvalidError):
        load_callback_modules(tmp_path / "missing")

    (tmp_path / "Broken.py").write_text("def callbackX(:\n", encoding="utf-8")
    with pytest.raises(ConfigurationInvalidError):
        load_callback_modules(tmp_path)
