"""
Reveal Transaction Signing

BIP341 script-path signature hashing for the commit input of a reveal
transaction, using SIGHASH_DEFAULT so the signature commits to every input
and output.

References:
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
- BIP342: https://github.com/bitcoin/bips/blob/master/bip-0342.mediawiki
"""

import logging
import struct
from typing import Sequence

from crypto.commitments import tap_leaf_hash
from crypto.keys import PrivateKey, tagged_hash
from crypto.signatures import SchnorrSignature, sign_schnorr, verify_schnorr

from .exceptions import InvariantError
from .transaction import Transaction, TxOut
from .utils import serialize_compact_size, sha256


logger = logging.getLogger(__name__)

SIGHASH_DEFAULT = 0x00
SIGHASH_EPOCH = 0x00
KEY_VERSION = 0x00
NO_CODESEPARATOR = 0xffffffff


def taproot_script_spend_sighash(tx: Transaction, input_index: int, prevouts: Sequence[TxOut],
                                 leaf_hash: bytes) -> bytes:
    """
    Signature hash for a script-path spend with SIGHASH_DEFAULT.

    Args:
        tx: Transaction being signed
        input_index: Index of the input spending the script leaf
        prevouts: Outputs spent by every input, in input order
        leaf_hash: TapLeaf hash of the executed script

    Returns:
        32-byte signature hash
    """
    if len(prevouts) != len(tx.inputs):
        raise InvariantError(
            f"{len(prevouts)} prevouts supplied for {len(tx.inputs)} inputs"
        )
    if not 0 <= input_index < len(tx.inputs):
        raise InvariantError(f"input index {input_index} out of range")

    sha_prevouts = sha256(b''.join(txin.previous_output.serialize() for txin in tx.inputs))
    sha_amounts = sha256(b''.join(struct.pack('<Q', txout.value) for txout in prevouts))
    sha_scriptpubkeys = sha256(b''.join(
        serialize_compact_size(len(txout.script_pubkey)) + txout.script_pubkey for txout in prevouts
    ))
    sha_sequences = sha256(b''.join(struct.pack('<I', txin.sequence) for txin in tx.inputs))
    sha_outputs = sha256(b''.join(txout.serialize() for txout in tx.outputs))

    # ext_flag 1, no annex
    spend_type = 2

    message = bytes([SIGHASH_EPOCH, SIGHASH_DEFAULT])
    message += struct.pack('<i', tx.version)
    message += struct.pack('<I', tx.lock_time)
    message += sha_prevouts + sha_amounts + sha_scriptpubkeys + sha_sequences + sha_outputs
    message += bytes([spend_type])
    message += struct.pack('<I', input_index)
    message += leaf_hash
    message += bytes([KEY_VERSION])
    message += struct.pack('<I', NO_CODESEPARATOR)

    return tagged_hash("TapSighash", message)


def sign_reveal(tx: Transaction, commit_input: int, prevouts: Sequence[TxOut], key: PrivateKey,
                script: bytes, control_block: bytes) -> Transaction:
    """
    Sign the commit input of ``tx`` and install its witness.

    Other inputs are left untouched; they are signed by the wallet.

    Args:
        tx: Reveal transaction; modified in place
        commit_input: Index of the input spending the commitment
        prevouts: Spent outputs in input order
        key: Untweaked signing key committed in the reveal script
        script: Reveal script
        control_block: Control block for the script leaf

    Returns:
        The signed transaction
    """
    sighash = taproot_script_spend_sighash(tx, commit_input, prevouts, tap_leaf_hash(script))
    signature = sign_schnorr(key, sighash)

    tx.inputs[commit_input].witness = [signature.to_bytes(), script, control_block]
    logger.debug(f"Signed reveal input {commit_input} of {tx.txid}")
    return tx


def verify_reveal_signature(tx: Transaction, commit_input: int, prevouts: Sequence[TxOut]) -> bool:
    """
    Verify the script-path signature of the commit input.

    The public key is read from the reveal script's ``<pubkey> OP_CHECKSIG`` prefix.

    Args:
        tx: Signed reveal transaction
        commit_input: Index of the input spending the commitment
        prevouts: Spent outputs in input order

    Returns:
        True if the signature verifies
    """
    witness = tx.inputs[commit_input].witness
    if len(witness) != 3:
        return False

    signature, script, _ = witness
    if len(signature) != 64 or len(script) < 34 or script[0] != 0x20:
        return False

    sighash = taproot_script_spend_sighash(tx, commit_input, prevouts, tap_leaf_hash(script))
    return verify_schnorr(script[1:33], SchnorrSignature.from_bytes(signature), sighash)
