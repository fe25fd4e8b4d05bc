from collections import OrderedDict

import pytest

from starkops.calldata import Uint256
from starkops.confirm import _confirm_resolution, _continue
from starkops.params import Transactor


def answer(monkeypatch, *answers):
    prompts = list()
    remaining = iter(answers)

    def _input(prompt):
        prompts.append(prompt)
        return next(remaining)

    monkeypatch.setattr("builtins.input", _input)
    return prompts


def test_abort(monkeypatch):
    answer(monkeypatch, "n")
    with pytest.raises(SystemExit):
        _continue()


def test_confirm_resolution(monkeypatch, capsys):
    prompts = answer(monkeypatch, "y")
    _confirm_resolution(OrderedDict([("admin", 0x1), ("members", [2, 3])]), "Staking")

    output = capsys.readouterr().out
    assert "admin=0x1" in output
    assert "members=[0x2, 0x3]" in output
    assert prompts == ["Deploy Staking Y/N? "]


def test_zero_value_needs_second_confirmation(monkeypatch, capsys):
    prompts = answer(monkeypatch, "y", "y")
    _confirm_resolution(OrderedDict([("admin", 0x1), ("min_stake", Uint256(0, 0))]), "Staking")

    assert "min_stake=u256(0)" in capsys.readouterr().out
    assert len(prompts) == 2
    assert prompts[1].startswith("Zero value detected")


def test_transactor_asks_before_submitting(monkeypatch, executor, signer, starknet):
    starknet.add_timelock(0x57A)
    answer(monkeypatch, "n")
    transactor = Transactor(executor=executor, signer=signer)

    with pytest.raises(SystemExit):
        transactor.transact(0x57A, "set_upgrade_delay", [60], name="Staking")
    assert starknet.transactions == {}
