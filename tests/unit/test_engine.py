"""
Tests for building and running batch inscriptions.
"""

import pytest

from crypto.commitments import TaprootCommitment, reveal_script_prefix
from crypto.keys import PrivateKey
from inscribe.accounting import UtxoStore, calculate_fee
from inscribe.address import Chain, script_to_address
from inscribe.batch import Mode, ParentInfo
from inscribe.engine import BatchInscriber, create_batch_inscription_transactions, select_satpoint
from inscribe.envelope import Inscription, append_batch_reveal_script
from inscribe.exceptions import (
    BroadcastError,
    ConfigurationError,
    InscriptionStateError,
    WeightLimitError,
)
from inscribe.fees import FeeRate
from inscribe.signer import verify_reveal_signature
from inscribe.transaction import InscriptionId, OutPoint, SatPoint, Transaction, TxOut


PARENT_ID = InscriptionId("ab" * 32, 0)
COMMITMENT_KEY = PrivateKey(b'\x33' * 32)


def build(batch, utxos, change, **kwargs):
    return create_batch_inscription_transactions(batch, Chain.REGTEST, kwargs.pop('inscriptions', {}),
                                                 utxos, change, **kwargs)


def commitment_for(batch, key=COMMITMENT_KEY):
    """Commitment that ``key`` would build for the inscriptions of ``batch``."""
    public_key = key.public_key()
    script = append_batch_reveal_script(batch.inscriptions, reveal_script_prefix(public_key.x_only))
    return TaprootCommitment.build(script, public_key)


class TestSelectSatpoint:
    """Test choosing the inscribed sat."""

    def test_first_cardinal_output(self, make_batch, utxos, funding_outpoint):
        assert select_satpoint(make_batch(1), {}, utxos) == SatPoint(funding_outpoint, 0)

    def test_skips_inscribed_outputs(self, make_batch, utxos, funding_outpoint, make_txid):
        inscribed = {SatPoint(funding_outpoint, 0): InscriptionId(make_txid(90), 0)}
        assert select_satpoint(make_batch(1), inscribed, utxos) == SatPoint(OutPoint(make_txid(2), 1), 0)

    def test_explicit_satpoint(self, make_batch, utxos, make_txid):
        satpoint = SatPoint(OutPoint(make_txid(2), 1), 600)
        assert select_satpoint(make_batch(1, satpoint=satpoint), {}, utxos) == satpoint

    def test_commitment_uses_null_satpoint(self, make_batch, utxos, make_txid):
        batch = make_batch(1, commitment=OutPoint(make_txid(5), 0), key="unused")
        assert select_satpoint(batch, {}, utxos) == SatPoint.null()

    def test_no_cardinal_utxos(self, make_batch, utxos, funding_outpoint):
        with pytest.raises(InscriptionStateError, match="wallet contains no cardinal utxos"):
            select_satpoint(make_batch(1), {}, utxos, locked={funding_outpoint},
                            runic={OutPoint(f"{2:064x}", 1)})


class TestCreateBatchTransactions:
    """Test commit and reveal construction."""

    def test_fees_balance(self, make_batch, utxos, change):
        """Total fees equal wallet value spent minus value created."""
        batch = make_batch(2, commit_fee_rate=FeeRate(2.0))
        spent_before = {outpoint: value for outpoint, value in utxos.items()}

        built = build(batch, utxos, change)

        commit_inputs = [txin.previous_output for txin in built.commit_tx.inputs]
        spent = sum(spent_before[outpoint] for outpoint in commit_inputs)
        commit_vout = built.reveal_tx.inputs[built.commit_input].previous_output.vout
        kept = sum(txout.value for vout, txout in enumerate(built.commit_tx.outputs) if vout != commit_vout)

        assert built.total_fees == spent - kept - built.reveal_tx.output_value()
        assert built.total_fees == calculate_fee(built.commit_tx, utxos) + calculate_fee(built.reveal_tx, utxos)

    def test_reveal_spends_commit_output(self, make_batch, utxos, change):
        built = build(make_batch(1), utxos, change)

        commit_outpoint = built.reveal_tx.inputs[built.commit_input].previous_output
        assert commit_outpoint.txid == built.commit_tx.txid
        assert built.commit_tx.outputs[commit_outpoint.vout].script_pubkey == built.commitment.script_pubkey
        assert built.commit_address.startswith("bcrt1p")

    def test_reveal_signature(self, make_batch, utxos, change):
        """The commit input witness is a valid script-path spend."""
        built = build(make_batch(1), utxos, change)

        witness = built.reveal_tx.inputs[built.commit_input].witness
        assert witness[1] == built.commitment.script
        assert witness[2] == built.commitment.control_block
        assert verify_reveal_signature(built.reveal_tx, built.commit_input, built.prevouts)

    def test_recovery_key_matches_commitment(self, make_batch, utxos, change):
        built = build(make_batch(1), utxos, change)
        assert built.recovery_key_pair.matches(built.commitment.output_key)

    def test_separate_outputs(self, make_batch, utxos, change, destination_script):
        built = build(make_batch(3, postage=1_000), utxos, change)

        assert [txout.value for txout in built.reveal_tx.outputs] == [1_000] * 3
        assert all(txout.script_pubkey == destination_script for txout in built.reveal_tx.outputs)

    def test_parent_passthrough(self, make_batch, utxos, change, make_txid, make_p2tr):
        """The parent is spent first and returned to its destination."""
        parent_info = ParentInfo(
            destination=make_p2tr(2001),
            id=PARENT_ID,
            location=SatPoint(OutPoint(make_txid(50), 0), 0),
            tx_out=TxOut(546, make_p2tr(2002)),
        )
        child = Inscription(content_type="text/plain", body=b"child", parent=PARENT_ID)
        batch = make_batch(inscriptions=[child, child], parent_info=parent_info)

        built = build(batch, utxos, change)

        assert built.commit_input == 1
        assert built.reveal_tx.inputs[0].previous_output == parent_info.location.outpoint
        assert built.reveal_tx.outputs[0].value == 546
        assert built.reveal_tx.outputs[0].script_pubkey == parent_info.destination
        assert len(built.reveal_tx.outputs) == 3
        assert built.prevouts[0] == parent_info.tx_out

    def test_parent_output_not_used_for_funding(self, make_batch, change, funding_outpoint, make_txid, make_p2tr):
        """The parent output is spent by the reveal only, even when no inscription index knows it."""
        parent_outpoint = OutPoint(make_txid(50), 0)
        parent_info = ParentInfo(
            destination=make_p2tr(2001),
            id=PARENT_ID,
            location=SatPoint(parent_outpoint, 0),
            tx_out=TxOut(10_000, make_p2tr(2002)),
        )
        child = Inscription(content_type="text/plain", body=b"child", parent=PARENT_ID)
        batch = make_batch(inscriptions=[child], parent_info=parent_info)
        utxos = UtxoStore({parent_outpoint: 10_000, funding_outpoint: 100_000})

        built = build(batch, utxos, change)

        commit_inputs = [txin.previous_output for txin in built.commit_tx.inputs]
        assert parent_outpoint not in commit_inputs
        assert commit_inputs[0] == funding_outpoint
        assert built.satpoint == SatPoint(funding_outpoint, 0)
        assert built.reveal_tx.inputs[0].previous_output == parent_outpoint

    def test_parent_output_is_not_cardinal(self, make_batch, change, make_txid, make_p2tr):
        parent_outpoint = OutPoint(make_txid(50), 0)
        parent_info = ParentInfo(
            destination=make_p2tr(2001),
            id=PARENT_ID,
            location=SatPoint(parent_outpoint, 0),
            tx_out=TxOut(100_000, make_p2tr(2002)),
        )
        child = Inscription(content_type="text/plain", body=b"child", parent=PARENT_ID)

        with pytest.raises(InscriptionStateError, match="wallet contains no cardinal utxos"):
            build(make_batch(inscriptions=[child], parent_info=parent_info),
                  UtxoStore({parent_outpoint: 100_000}), change)

        batch = make_batch(inscriptions=[child], parent_info=parent_info, satpoint=SatPoint(parent_outpoint, 0))
        with pytest.raises(InscriptionStateError, match="holding parent"):
            build(batch, UtxoStore({parent_outpoint: 100_000}), change)

    def test_single_utxo_conservation(self, make_batch, change, funding_outpoint):
        """Reveal output = V - reveal fee - (V - commitment output value)."""
        value = 100_000
        utxos = UtxoStore({funding_outpoint: value})

        built = build(make_batch(1, mode=Mode.SHARED_OUTPUT), utxos, change)

        commit_outpoint = built.reveal_tx.inputs[built.commit_input].previous_output
        commit_output_value = built.commit_tx.outputs[commit_outpoint.vout].value
        reveal_fee = calculate_fee(built.reveal_tx, utxos)

        assert [txin.previous_output for txin in built.commit_tx.inputs] == [funding_outpoint]
        assert len(built.reveal_tx.outputs) == 1
        assert built.reveal_tx.outputs[0].value == value - reveal_fee - (value - commit_output_value)
        assert value == (built.commit_tx.output_value() + calculate_fee(built.commit_tx, utxos))

    def test_fees_increase_with_fee_rate(self, make_batch, change, funding_outpoint):
        """Both fees strictly increase with the fee rate for the same batch."""
        def fees(rate):
            utxos = UtxoStore({funding_outpoint: 100_000})
            batch = make_batch(2, commit_fee_rate=FeeRate(rate), reveal_fee_rate=FeeRate(rate))
            built = build(batch, utxos, change)
            return calculate_fee(built.commit_tx, utxos), calculate_fee(built.reveal_tx, utxos)

        low_commit, low_reveal = fees(1.0)
        high_commit, high_reveal = fees(2.0)

        assert high_commit > low_commit
        assert high_reveal > low_reveal

    def test_reinscription(self, make_batch, utxos, change, funding_outpoint, make_txid):
        """With reinscribe set, an inscribed sat is spent into the commitment."""
        satpoint = SatPoint(funding_outpoint, 0)
        inscriptions = {satpoint: InscriptionId(make_txid(90), 0)}
        batch = make_batch(1, satpoint=satpoint, reinscribe=True)

        built = build(batch, utxos, change, inscriptions=inscriptions)

        assert built.satpoint == satpoint
        assert built.commit_tx.inputs[0].previous_output == funding_outpoint
        commit_outpoint = built.reveal_tx.inputs[built.commit_input].previous_output
        assert commit_outpoint.vout == 0
        assert verify_reveal_signature(built.reveal_tx, built.commit_input, built.prevouts)

    def test_explicit_reveal_fee(self, make_batch, utxos, change):
        """A larger explicit reveal fee is what the reveal pays."""
        built = build(make_batch(1, reveal_fee=5_000), utxos, change)
        assert calculate_fee(built.reveal_tx, utxos) == 5_000

    def test_reinscription_rejected(self, make_batch, utxos, change, funding_outpoint, make_txid):
        inscriptions = {SatPoint(funding_outpoint, 0): InscriptionId(make_txid(90), 0)}
        batch = make_batch(1, satpoint=SatPoint(funding_outpoint, 0))

        with pytest.raises(InscriptionStateError, match="already inscribed"):
            build(batch, utxos, change, inscriptions=inscriptions)

    def test_weight_limit(self, make_batch, change, funding_outpoint):
        """Oversized reveals fail unless the limit is lifted."""
        large = Inscription(content_type="application/octet-stream", body=bytes(400_000))
        utxos = UtxoStore({funding_outpoint: 10_000_000})

        with pytest.raises(WeightLimitError):
            build(make_batch(inscriptions=[large]), utxos, change)

        built = build(make_batch(inscriptions=[large], no_limit=True), UtxoStore({funding_outpoint: 10_000_000}),
                      change)
        assert built.reveal_tx.weight > 400_000

    def test_reveal_inputs_need_lookup(self, make_batch, utxos, change, make_txid):
        commitment = commitment_for(make_batch(1))
        batch = make_batch(
            1,
            commitment=OutPoint(make_txid(80), 0),
            commitment_output=TxOut(50_000, commitment.script_pubkey),
            key=COMMITMENT_KEY.to_wif("regtest"),
            reveal_inputs=[OutPoint(make_txid(81), 0)],
        )
        with pytest.raises(ConfigurationError):
            build(batch, utxos, change)


class TestExistingCommitment:
    """Test revealing an output committed by an earlier run."""

    @pytest.fixture
    def commitment_batch(self, make_batch, make_txid):
        commitment = commitment_for(make_batch(1))
        return make_batch(
            1,
            commitment=OutPoint(make_txid(80), 0),
            commitment_output=TxOut(50_000, commitment.script_pubkey),
            key=COMMITMENT_KEY.to_wif("regtest"),
        )

    def test_spends_commitment(self, commitment_batch, utxos, change, wallet_change_script):
        """No commit transaction is built and the remainder returns as change."""
        built = build(commitment_batch, utxos, change)

        assert built.commit_tx.version == 0
        assert built.reveal_tx.inputs[0].previous_output == commitment_batch.commitment
        assert built.reveal_tx.outputs[1].script_pubkey == wallet_change_script
        assert built.total_fees == calculate_fee(built.reveal_tx, utxos)
        assert built.reveal_tx.output_value() + built.total_fees == 50_000
        assert verify_reveal_signature(built.reveal_tx, built.commit_input, built.prevouts)

    def test_next_inscriptions_change(self, make_batch, commitment_batch, utxos, change):
        """Change commits to the next batch under the same key."""
        batch = make_batch(
            1,
            commitment=commitment_batch.commitment,
            commitment_output=commitment_batch.commitment_output,
            key=commitment_batch.key,
            next_inscriptions=[Inscription(content_type="text/plain", body=b"next")],
        )
        next_batch = make_batch(inscriptions=[Inscription(content_type="text/plain", body=b"next")])

        built = build(batch, utxos, change)

        assert built.reveal_tx.outputs[1].script_pubkey == commitment_for(next_batch).script_pubkey


class TestBatchInscriber:
    """Test running a batch against a wallet."""

    def test_inscribe(self, make_batch, fake_wallet, fake_index):
        """Both transactions are signed, broadcast and reported."""
        output = BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(make_batch(2))
        report = output.to_dict()

        assert len(fake_wallet.broadcasts) == 2
        assert report['commit'] == Transaction.from_hex(fake_wallet.broadcasts[0]).txid
        assert report['reveal'] == Transaction.from_hex(fake_wallet.broadcasts[1]).txid
        assert report['inscriptions'] == [
            {'id': f"{report['reveal']}i0", 'location': f"{report['reveal']}:0:0"},
            {'id': f"{report['reveal']}i1", 'location': f"{report['reveal']}:1:0"},
        ]
        assert report['commit_hex'] is None
        assert report['total_fees'] > 0

    def test_recovery_key_backup(self, make_batch, fake_wallet, fake_index):
        BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(make_batch(1))

        assert len(fake_wallet.imported) == 1
        request = fake_wallet.imported[0]
        assert request['desc'].startswith("rawtr(")
        assert request['desc'].endswith("#abcd1234")
        assert request['active'] is False
        assert request['label'] == "commit tx recovery key"

    def test_no_backup(self, make_batch, fake_wallet, fake_index):
        BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(make_batch(1, no_backup=True))
        assert fake_wallet.imported == []

    def test_dry_run(self, make_batch, fake_wallet, fake_index):
        """Nothing is signed, imported or broadcast."""
        output = BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(make_batch(1, dry_run=True))

        assert fake_wallet.signed == []
        assert fake_wallet.broadcasts == []
        assert fake_wallet.imported == []
        assert output.commit is not None
        assert output.reveal is not None

    def test_no_broadcast_dumps(self, make_batch, fake_wallet, fake_index):
        """Signed transactions and the recovery descriptor are returned instead of broadcast."""
        output = BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(
            make_batch(1, no_broadcast=True)
        )

        assert fake_wallet.broadcasts == []
        assert Transaction.from_hex(output.commit_hex).txid == output.commit
        assert Transaction.from_hex(output.reveal_hex).txid == output.reveal
        assert output.recovery_descriptor.endswith("#abcd1234")

    def test_commit_only(self, make_batch, fake_wallet, fake_index):
        """Only the commit transaction is broadcast and no inscriptions are reported."""
        output = BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(
            make_batch(1, commit_only=True)
        )

        assert len(fake_wallet.broadcasts) == 1
        assert output.reveal is None
        assert output.inscriptions == []
        assert fake_wallet.imported == []

    def test_reveal_broadcast_failure(self, make_batch, fake_wallet, fake_index):
        """The error names the commit transaction that will be recovered."""
        fake_wallet.fail_reveal_broadcast = True

        with pytest.raises(BroadcastError, match="Failed to send reveal transaction") as exc_info:
            BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(make_batch(1))

        commit = Transaction.from_hex(fake_wallet.broadcasts[0]).txid
        assert exc_info.value.commit_txid == commit
        assert f"Commit tx {commit} will be recovered once mined" in str(exc_info.value)

    def test_change_address(self, make_batch, fake_wallet, fake_index, make_p2tr):
        """Commit change goes to the requested address."""
        script = make_p2tr(5000)
        BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(
            make_batch(1), change_address=script_to_address(script, Chain.REGTEST),
        )

        commit = Transaction.from_hex(fake_wallet.broadcasts[0])
        assert commit.outputs[-1].script_pubkey == script

    def test_inscribed_wallet(self, make_batch, wallet_factory, index_factory, funding_outpoint, make_txid):
        """A wallet whose only output is inscribed has nothing to inscribe on."""
        wallet = wallet_factory({funding_outpoint: 100_000})
        index = index_factory({SatPoint(funding_outpoint, 0): InscriptionId(make_txid(90), 0)})

        with pytest.raises(InscriptionStateError, match="wallet contains no cardinal utxos"):
            BatchInscriber(wallet, index, Chain.REGTEST).inscribe(make_batch(1))

    def test_same_sat_batch(self, make_batch, fake_wallet, fake_index):
        output = BatchInscriber(fake_wallet, fake_index, Chain.REGTEST).inscribe(
            make_batch(3, mode=Mode.SAME_SAT, postage=1_000)
        )
        reveal = Transaction.from_hex(fake_wallet.broadcasts[1])

        assert [txout.value for txout in reveal.outputs] == [3_000]
        assert {info.location.offset for info in output.inscriptions} == {0}
