"""
Tests for batch configuration, output policies and reveal assembly.
"""

import pytest

from inscribe.batch import (
    Mode,
    ParentInfo,
    SameSat,
    SeparateOutputs,
    SharedOutput,
    output_policy,
)
from inscribe.builder import (
    adopt_commitment,
    plan_reveal,
    resolve_commit_outpoint,
    reveal_prevouts,
)
from inscribe.envelope import Inscription
from inscribe.exceptions import ConfigurationError, FundingError, InvariantError
from inscribe.transaction import (
    InscriptionId,
    OutPoint,
    SatPoint,
    SEQUENCE_ENABLE_RBF_NO_LOCKTIME,
    Transaction,
    TxIn,
    TxOut,
)


PARENT_ID = InscriptionId("cd" * 32, 0)


@pytest.fixture
def parent_info(make_txid, make_p2tr):
    return ParentInfo(
        destination=make_p2tr(2001),
        id=PARENT_ID,
        location=SatPoint(OutPoint(make_txid(50), 0), 0),
        tx_out=TxOut(546, make_p2tr(2002)),
    )


@pytest.fixture
def child_inscription():
    return Inscription(content_type="text/plain;charset=utf-8", body=b"child", parent=PARENT_ID)


class TestOutputPolicy:
    """Test mode variants."""

    def test_variants(self, destination_script):
        """Each mode maps to its variant."""
        assert isinstance(output_policy(Mode.SAME_SAT, [destination_script], 3), SameSat)
        assert isinstance(output_policy(Mode.SHARED_OUTPUT, [destination_script], 3), SharedOutput)
        assert isinstance(output_policy(Mode.SEPARATE_OUTPUTS, [destination_script] * 3, 3), SeparateOutputs)
        assert isinstance(output_policy("same-sat", [destination_script], 1), SameSat)

    def test_single_destination_modes(self, destination_script):
        """Shared-output and same-sat modes take exactly one destination."""
        with pytest.raises(ConfigurationError):
            output_policy(Mode.SHARED_OUTPUT, [destination_script] * 2, 2)
        with pytest.raises(ConfigurationError):
            output_policy(Mode.SAME_SAT, [], 2)

    def test_separate_outputs_count(self, destination_script):
        """Separate outputs need one destination per inscription."""
        with pytest.raises(ConfigurationError, match="3 inscriptions but 2 destinations"):
            output_policy(Mode.SEPARATE_OUTPUTS, [destination_script] * 2, 3)


class TestBatch:
    """Test batch construction."""

    def test_separate_outputs(self, make_batch, destination_script):
        """One postage output per inscription."""
        batch = make_batch(3, postage=1_000)
        assert [txout.value for txout in batch.destination_outputs()] == [1_000] * 3
        assert batch.total_postage == 3_000
        assert [batch.location(i) for i in range(3)] == [(0, 0), (1, 0), (2, 0)]

    def test_shared_output(self, make_batch):
        """One output holding every inscription, postage apart."""
        batch = make_batch(3, mode=Mode.SHARED_OUTPUT, postage=1_000)
        assert [txout.value for txout in batch.destination_outputs()] == [3_000]
        assert [batch.location(i) for i in range(3)] == [(0, 0), (0, 1_000), (0, 2_000)]

    def test_same_sat(self, make_batch):
        """Same-sat mode puts every inscription on sat 0 of one output."""
        batch = make_batch(3, mode=Mode.SAME_SAT, postage=1_000)
        assert batch.total_postage == 3_000
        assert [batch.location(i) for i in range(3)] == [(0, 0)] * 3

    def test_parent_shifts_locations(self, make_batch, parent_info, child_inscription):
        """The parent passthrough output comes first."""
        batch = make_batch(inscriptions=[child_inscription] * 2, parent_info=parent_info)
        assert [batch.location(i) for i in range(2)] == [(1, 0), (2, 0)]

    def test_empty_batch(self, make_batch):
        with pytest.raises(ConfigurationError):
            make_batch(inscriptions=[], destinations=[])

    def test_parent_mismatch(self, make_batch, parent_info):
        """Inscriptions must name the batch parent."""
        with pytest.raises(ConfigurationError, match="does not match batch parent"):
            make_batch(1, parent_info=parent_info)

    def test_invalid_postage(self, make_batch):
        with pytest.raises(ConfigurationError):
            make_batch(1, postage=0)

    def test_implied_flags(self, make_batch):
        """Commit-only implies no backup; no-broadcast implies dump."""
        assert make_batch(1, commit_only=True).no_backup
        assert make_batch(1, no_broadcast=True).dump
        assert not make_batch(1).no_backup


class TestRevealPlan:
    """Test reveal input and output order."""

    def test_without_parent(self, make_batch):
        """A single null commit input and the inscription outputs."""
        plan = plan_reveal(make_batch(2))

        assert plan.inputs == [OutPoint.null()]
        assert plan.commit_input == 0
        assert len(plan.outputs) == 2
        assert plan.change_output is None

    def test_with_parent(self, make_batch, parent_info, child_inscription):
        """The parent is spent first and returned in the first output."""
        plan = plan_reveal(make_batch(inscriptions=[child_inscription], parent_info=parent_info))

        assert plan.inputs == [parent_info.location.outpoint, OutPoint.null()]
        assert plan.commit_input == 1
        assert plan.outputs[0].value == parent_info.tx_out.value
        assert plan.outputs[0].script_pubkey == parent_info.destination

    def test_rbf_sequences(self, make_batch):
        """Every reveal input signals replaceability."""
        tx = plan_reveal(make_batch(1)).transaction()
        assert all(txin.sequence == SEQUENCE_ENABLE_RBF_NO_LOCKTIME for txin in tx.inputs)

    def test_commitment_change_output(self, make_batch, make_txid, change_script):
        """Spending an existing commitment adds a change output after the inscriptions."""
        commitment = OutPoint(make_txid(60), 0)
        reveal_input = OutPoint(make_txid(61), 2)
        batch = make_batch(
            1,
            commitment=commitment,
            commitment_output=TxOut(50_000, b'\x51\x20' + bytes(32)),
            key="unused",
            reveal_inputs=[reveal_input],
        )
        plan = plan_reveal(batch, change_script)

        assert plan.change_output == 1
        assert plan.inputs == [OutPoint.null(), reveal_input]

        adopt_commitment(plan, commitment, batch.commitment_output, 5_000, batch.total_postage, 1_000)
        assert plan.commit_outpoint == commitment
        assert plan.outputs[1].value == 50_000 + 5_000 - batch.total_postage - 1_000

    def test_commitment_too_small(self, make_batch, make_txid, change_script):
        commitment = OutPoint(make_txid(60), 0)
        batch = make_batch(1, commitment=commitment, commitment_output=TxOut(5_000, b'\x51\x20' + bytes(32)),
                           key="unused")
        plan = plan_reveal(batch, change_script)

        with pytest.raises(FundingError):
            adopt_commitment(plan, commitment, batch.commitment_output, 0, batch.total_postage, 1_000)

    @pytest.mark.parametrize("remainder", [0, 329])
    def test_commitment_dust_change_dropped(self, make_batch, make_txid, change_script, remainder):
        """A remainder below the dust limit is left to fees instead of creating a change output."""
        commitment = OutPoint(make_txid(60), 0)
        batch = make_batch(1, commitment=commitment, commitment_output=TxOut(1, b'\x51\x20' + bytes(32)),
                           key="unused")
        value = batch.total_postage + 1_000 + remainder
        plan = plan_reveal(batch, change_script)

        adopt_commitment(plan, commitment, TxOut(value, b'\x51\x20' + bytes(32)), 0, batch.total_postage, 1_000)

        assert plan.change_output is None
        assert len(plan.outputs) == 1
        assert change_script not in [txout.script_pubkey for txout in plan.outputs]

    def test_commitment_change_at_dust_limit_kept(self, make_batch, make_txid, change_script):
        commitment = OutPoint(make_txid(60), 0)
        batch = make_batch(1, commitment=commitment, commitment_output=TxOut(1, b'\x51\x20' + bytes(32)),
                           key="unused")
        plan = plan_reveal(batch, change_script)

        adopt_commitment(plan, commitment, TxOut(batch.total_postage + 1_330, b'\x51\x20' + bytes(32)),
                         0, batch.total_postage, 1_000)

        assert plan.outputs[plan.change_output].value == 330

    def test_commitment_needs_change_script(self, make_batch, make_txid):
        batch = make_batch(1, commitment=OutPoint(make_txid(60), 0), key="unused")
        with pytest.raises(InvariantError):
            plan_reveal(batch)

    def test_resolve_commit_outpoint(self, make_batch, make_txid, destination_script):
        """The commit input points at the commitment output of the commit transaction."""
        commit_script = b'\x51\x20' + b'\x07' * 32
        commit_tx = Transaction(
            inputs=[TxIn(OutPoint(make_txid(70), 0))],
            outputs=[TxOut(400, destination_script), TxOut(12_000, commit_script)],
        )
        plan = plan_reveal(make_batch(1))

        outpoint, txout = resolve_commit_outpoint(plan, commit_tx, commit_script)
        assert outpoint == OutPoint(commit_tx.txid, 1)
        assert plan.inputs[0] == outpoint
        assert txout.value == 12_000

        with pytest.raises(InvariantError):
            resolve_commit_outpoint(plan, commit_tx, b'\x51\x20' + b'\x08' * 32)

    def test_prevouts_follow_input_order(self, make_batch, parent_info, child_inscription):
        batch = make_batch(inscriptions=[child_inscription], parent_info=parent_info)
        commit_output = TxOut(20_000, b'\x51\x20' + bytes(32))

        assert reveal_prevouts(batch, commit_output) == [parent_info.tx_out, commit_output]
