from __future__ import annotations

import json

from parcomm.cli import main, smoke_rank
from parcomm.transport.local import LocalGroup


def test_cli_smoke_local(capsys):
    assert main(["smoke", "--ranks", "3"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True
    assert [r["rank"] for r in out["results"]] == [0, 1, 2]
    assert set(out["results"][0]["checks"]) == {
        "exchange",
        "exchange_sym",
        "exchange_offsets",
        "exchange_sym_unknown",
        "exchange_pack_unpack",
        "broadcast",
    }


def test_smoke_single_rank():
    (result,) = LocalGroup(1).run(smoke_rank)
    assert result["ok"], result["checks"]
