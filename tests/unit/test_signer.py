"""
Tests for BIP341 script-path signing of reveal transactions.
"""

import pytest

from crypto.commitments import TaprootCommitment, reveal_script_prefix, tap_leaf_hash
from crypto.keys import PrivateKey
from inscribe.envelope import Inscription, append_batch_reveal_script
from inscribe.exceptions import InvariantError
from inscribe.signer import sign_reveal, taproot_script_spend_sighash, verify_reveal_signature
from inscribe.transaction import OutPoint, Transaction, TxIn, TxOut


@pytest.fixture
def key():
    return PrivateKey(b'\x21' * 32)


@pytest.fixture
def commitment(key):
    prefix = reveal_script_prefix(key.public_key().x_only)
    script = append_batch_reveal_script([Inscription(content_type="text/plain", body=b"signed")], prefix)
    return TaprootCommitment.build(script, key.public_key())


@pytest.fixture
def reveal(make_txid, destination_script):
    return Transaction(
        inputs=[TxIn(OutPoint(make_txid(40), 0)), TxIn(OutPoint(make_txid(41), 1))],
        outputs=[TxOut(10_000, destination_script)],
    )


@pytest.fixture
def prevouts(commitment, change_script):
    return [TxOut(546, change_script), TxOut(12_000, commitment.script_pubkey)]


class TestRevealSigning:
    """Test signing the commit input."""

    def test_sign_and_verify(self, reveal, prevouts, key, commitment):
        """The installed witness verifies against the same prevouts."""
        sign_reveal(reveal, 1, prevouts, key, commitment.script, commitment.control_block)

        witness = reveal.inputs[1].witness
        assert len(witness[0]) == 64
        assert witness[1:] == [commitment.script, commitment.control_block]
        assert reveal.inputs[0].witness == []
        assert verify_reveal_signature(reveal, 1, prevouts)

    def test_signature_commits_to_amounts(self, reveal, prevouts, key, commitment):
        """Changing a spent amount invalidates the signature."""
        sign_reveal(reveal, 1, prevouts, key, commitment.script, commitment.control_block)

        tampered = [prevouts[0], TxOut(12_001, prevouts[1].script_pubkey)]
        assert not verify_reveal_signature(reveal, 1, tampered)

    def test_signature_commits_to_outputs(self, reveal, prevouts, key, commitment):
        """Changing an output invalidates the signature."""
        sign_reveal(reveal, 1, prevouts, key, commitment.script, commitment.control_block)

        reveal.outputs[0].value -= 1
        assert not verify_reveal_signature(reveal, 1, prevouts)

    def test_sighash_depends_on_input_index(self, reveal, prevouts, commitment):
        leaf_hash = tap_leaf_hash(commitment.script)
        assert (taproot_script_spend_sighash(reveal, 0, prevouts, leaf_hash)
                != taproot_script_spend_sighash(reveal, 1, prevouts, leaf_hash))

    def test_prevouts_must_match_inputs(self, reveal, prevouts, commitment):
        with pytest.raises(InvariantError):
            taproot_script_spend_sighash(reveal, 0, prevouts[:1], tap_leaf_hash(commitment.script))

    def test_unsigned_input_does_not_verify(self, reveal, prevouts):
        assert not verify_reveal_signature(reveal, 1, prevouts)
