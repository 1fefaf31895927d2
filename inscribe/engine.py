"""
Batch Inscription Engine

Builds the commit/reveal transaction pair for a batch and drives a wallet
through signing, recovery key backup and broadcast.

The engine itself never talks to a node: balances, inscription state and
previous outputs come in through small protocols so the same code runs
against Bitcoin Core RPC or in-memory fixtures.
"""

import logging
from dataclasses import dataclass
from typing import AbstractSet, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from crypto.commitments import TaprootCommitment, reveal_script_prefix
from crypto.keys import PrivateKey
from crypto.recovery import (
    DescriptorWallet,
    TweakedKeyPair,
    backup_recovery_key,
    describe_recovery_key,
)
from validator.core import PolicyValidator, ValidationContext

from .accounting import BatchOutput, UtxoStore, batch_output, total_fees
from .address import Chain, address_to_script, script_to_address
from .batch import Batch
from .builder import adopt_commitment, plan_reveal, resolve_commit_outpoint, reveal_prevouts
from .coin_selection import CoinSelector, FundingRequest, Target, TransactionBuilder
from .envelope import append_batch_reveal_script
from .exceptions import (
    BroadcastError,
    ConfigurationError,
    InscriptionStateError,
    InvariantError,
)
from .fees import dummy_witness_transaction, effective_reveal_fee, estimate_reveal_fee
from .signer import sign_reveal
from .transaction import InscriptionId, OutPoint, SatPoint, Transaction, TxOut


logger = logging.getLogger(__name__)


class OutputLookup(Protocol):
    """Resolves an outpoint to the output it references."""

    def get_transaction_output(self, outpoint: OutPoint) -> TxOut:
        ...


class InscriptionIndex(Protocol):
    """Inscription and rune state of the wallet's outputs."""

    def get_inscriptions(self, utxos: UtxoStore) -> Mapping[SatPoint, InscriptionId]:
        ...

    def get_runic_outputs(self, utxos: UtxoStore) -> Set[OutPoint]:
        ...


class InscriptionWallet(DescriptorWallet, OutputLookup, Protocol):
    """Wallet operations used by BatchInscriber."""

    def get_unspent_outputs(self) -> Mapping[OutPoint, int]:
        ...

    def get_locked_outputs(self) -> Set[OutPoint]:
        ...

    def get_change_address(self) -> str:
        ...

    def sign_transaction(self, tx: Transaction,
                         prevouts: Sequence[Tuple[OutPoint, TxOut]] = ()) -> str:
        ...

    def broadcast(self, tx_hex: str) -> str:
        ...

    def decode_txid(self, tx_hex: str) -> str:
        ...


@dataclass
class BatchTransactions:
    """
    Result of building a batch: both transactions and what is needed to sign,
    back up and report them.
    """
    satpoint: SatPoint
    commit_tx: Transaction
    reveal_tx: Transaction
    recovery_key_pair: TweakedKeyPair
    total_fees: int
    commitment: TaprootCommitment
    commit_address: str
    commit_input: int
    prevouts: List[TxOut]
    reveal_input_outputs: List[TxOut]
    key: PrivateKey


def parent_outpoint(batch: Batch) -> Optional[OutPoint]:
    """Output holding the parent inscription, spent only by the reveal."""
    if batch.parent_info is None:
        return None
    return batch.parent_info.location.outpoint


def select_satpoint(batch: Batch, wallet_inscriptions: Mapping[SatPoint, InscriptionId],
                    utxos: UtxoStore, locked: AbstractSet[OutPoint] = frozenset(),
                    runic: AbstractSet[OutPoint] = frozenset()) -> SatPoint:
    """
    Choose the sat that receives the first inscription.

    Args:
        batch: Batch configuration
        wallet_inscriptions: Known inscriptions in the wallet
        utxos: Wallet outputs and their values
        locked: Outputs locked in the wallet
        runic: Outputs holding runes

    Returns:
        The explicit satpoint, the null satpoint when spending an existing
        commitment, or the first sat of the first cardinal output
    """
    if batch.commitment is not None:
        return SatPoint.null()

    parent = parent_outpoint(batch)

    if batch.satpoint is not None:
        if batch.satpoint.outpoint == parent:
            raise InscriptionStateError(
                f"satpoint {batch.satpoint} is in the output holding parent {batch.parent_info.id}"
            )
        return batch.satpoint

    inscribed = {satpoint.outpoint for satpoint in wallet_inscriptions}

    for outpoint, value in utxos.items():
        if value == 0 or outpoint in inscribed or outpoint in locked or outpoint in runic:
            continue
        if outpoint == parent:
            continue
        return SatPoint(outpoint, 0)

    raise InscriptionStateError("wallet contains no cardinal utxos")


def create_batch_inscription_transactions(
    batch: Batch,
    chain: Chain,
    wallet_inscriptions: Mapping[SatPoint, InscriptionId],
    utxos: UtxoStore,
    change: Tuple[bytes, bytes],
    locked: AbstractSet[OutPoint] = frozenset(),
    runic: AbstractSet[OutPoint] = frozenset(),
    output_lookup: Optional[OutputLookup] = None,
    coin_selector: Optional[CoinSelector] = None,
    validator: Optional[PolicyValidator] = None,
) -> BatchTransactions:
    """
    Build the commit and signed reveal transaction for ``batch``.

    Args:
        batch: Batch configuration
        chain: Chain used for keys and addresses
        wallet_inscriptions: Known inscriptions in the wallet
        utxos: Wallet outputs and their values; the commit and reveal inputs
            are registered into it
        change: Change scripts; the first is a fresh wallet address receiving
            the reveal change and any sats in front of the target sat, the
            second receives the commit change
        locked: Outputs locked in the wallet
        runic: Outputs holding runes
        output_lookup: Resolves extra reveal inputs to their outputs
        coin_selector: Funds the commit transaction
        validator: Policy validator

    Returns:
        BatchTransactions
    """
    coin_selector = coin_selector or TransactionBuilder()
    validator = validator or PolicyValidator()

    satpoint = select_satpoint(batch, wallet_inscriptions, utxos, locked, runic)

    context = ValidationContext(batch=batch, wallet_inscriptions=wallet_inscriptions, satpoint=satpoint)
    validator.pre_check(context)
    for warning in context.validation_warnings:
        logger.warning(warning)

    if batch.key is not None:
        key = PrivateKey.from_wif(batch.key, chain.value)
    else:
        key = PrivateKey()
        if batch.commit_only:
            logger.warning(f"use --key {key.to_wif(chain.value)} to reveal this commitment")

    public_key = key.public_key()
    prefix = reveal_script_prefix(public_key.x_only)

    reveal_script = append_batch_reveal_script(batch.inscriptions, prefix)
    commitment = TaprootCommitment.build(reveal_script, public_key)
    control_block = commitment.control_block
    if not commitment.verify_control_block(control_block):
        raise InvariantError("control block does not commit to the reveal script")

    commit_address = script_to_address(commitment.script_pubkey, chain)
    logger.info(f"Commitment address {commit_address}")

    if batch.next_inscriptions:
        next_script = append_batch_reveal_script(batch.next_inscriptions, prefix)
        reveal_change = TaprootCommitment.build(next_script, public_key).script_pubkey
        logger.info(
            f"Reveal change commits to {len(batch.next_inscriptions)} next inscription(s) at "
            f"{script_to_address(reveal_change, chain)}"
        )
    else:
        reveal_change = change[0]

    plan = plan_reveal(batch, reveal_change if batch.commitment is not None else None)

    reveal_fee = effective_reveal_fee(
        estimate_reveal_fee(plan.transaction(), plan.commit_input, reveal_script,
                            control_block, batch.reveal_fee_rate),
        batch.reveal_fee,
    )

    reveal_input_outputs = []
    if batch.reveal_inputs:
        if output_lookup is None:
            raise ConfigurationError("reveal inputs given but their outputs cannot be looked up")
        for outpoint in batch.reveal_inputs:
            txout = output_lookup.get_transaction_output(outpoint)
            utxos.register_output(outpoint, txout.value)
            reveal_input_outputs.append(txout)
    reveal_input_value = sum(txout.value for txout in reveal_input_outputs)

    if batch.commitment is not None:
        commit_tx = Transaction.placeholder()
        commit_output = batch.commitment_output
        adopt_commitment(plan, batch.commitment, commit_output, reveal_input_value,
                         batch.total_postage, reveal_fee)
    else:
        amount = reveal_fee + batch.total_postage
        unspendable = set(locked)
        if batch.parent_info is not None:
            unspendable.add(parent_outpoint(batch))
        commit_tx = coin_selector.build_transaction(FundingRequest(
            satpoint=satpoint,
            inscriptions=wallet_inscriptions,
            utxos=utxos,
            recipient=commitment.script_pubkey,
            change=change,
            fee_rate=batch.commit_fee_rate,
            target=Target.no_change(amount) if batch.commit_only else Target.value(amount),
            locked=unspendable,
            runic=runic,
            force_inputs=batch.force_inputs,
            vsize_override=batch.commit_vsize,
        ))
        _, commit_output = resolve_commit_outpoint(plan, commit_tx, commitment.script_pubkey)

    reveal_tx = plan.transaction()

    context.reveal_tx = dummy_witness_transaction(reveal_tx, plan.commit_input, reveal_script, control_block)
    context.commit_input = plan.commit_input
    validator.post_check(context)

    prevouts = reveal_prevouts(batch, commit_output, reveal_input_outputs)
    sign_reveal(reveal_tx, plan.commit_input, prevouts, key, reveal_script, control_block)

    recovery_key_pair = TweakedKeyPair.from_key(key, commitment.merkle_root)
    if not recovery_key_pair.matches(commitment.output_key):
        raise InvariantError("recovery key does not match the commitment output key")

    utxos.register_output(plan.commit_outpoint, commit_output.value)
    if batch.parent_info is not None:
        utxos.register_output(batch.parent_info.location.outpoint, batch.parent_info.tx_out.value)

    fees = total_fees(commit_tx, reveal_tx, utxos,
                      fresh_commit=batch.commitment is None, commit_only=batch.commit_only)

    logger.info(
        f"Built batch of {len(batch.inscriptions)} inscription(s): "
        f"commit {commit_tx.txid}, reveal {reveal_tx.txid}, {fees} sats in fees"
    )

    return BatchTransactions(
        satpoint=satpoint,
        commit_tx=commit_tx,
        reveal_tx=reveal_tx,
        recovery_key_pair=recovery_key_pair,
        total_fees=fees,
        commitment=commitment,
        commit_address=commit_address,
        commit_input=plan.commit_input,
        prevouts=prevouts,
        reveal_input_outputs=reveal_input_outputs,
        key=key,
    )


class BatchInscriber:
    """
    Runs a batch against a wallet: build, sign, back up, broadcast.
    """

    def __init__(self, wallet: InscriptionWallet, index: InscriptionIndex, chain: Chain,
                 coin_selector: Optional[CoinSelector] = None,
                 validator: Optional[PolicyValidator] = None):
        self.wallet = wallet
        self.index = index
        self.chain = chain
        self.coin_selector = coin_selector
        self.validator = validator
        self.logger = logging.getLogger(__name__)

    def inscribe(self, batch: Batch, change_address: Optional[str] = None,
                 extra_utxos: Sequence[OutPoint] = ()) -> BatchOutput:
        """
        Inscribe ``batch``.

        Args:
            batch: Batch configuration
            change_address: Address receiving commit change; a fresh wallet
                change address when omitted
            extra_utxos: Outputs to make spendable that the wallet does not list

        Returns:
            Report of the run
        """
        utxos = UtxoStore(self.wallet.get_unspent_outputs())
        for outpoint in extra_utxos:
            if outpoint not in utxos:
                utxos.register_output(outpoint, self.wallet.get_transaction_output(outpoint).value)
        locked = self.wallet.get_locked_outputs()
        wallet_inscriptions = self.index.get_inscriptions(utxos)
        runic = self.index.get_runic_outputs(utxos)

        change = (
            address_to_script(self.wallet.get_change_address(), self.chain),
            address_to_script(change_address or self.wallet.get_change_address(), self.chain),
        )

        built = create_batch_inscription_transactions(
            batch, self.chain, wallet_inscriptions, utxos, change,
            locked=locked,
            runic=runic,
            output_lookup=self.wallet,
            coin_selector=self.coin_selector,
            validator=self.validator,
        )

        if batch.dry_run:
            self.logger.info("Dry run, nothing signed or broadcast")
            return batch_output(batch, built.commit_tx.txid, built.reveal_tx.txid, built.total_fees)

        signed_commit = None
        if batch.commitment is None:
            signed_commit = self.wallet.sign_transaction(built.commit_tx)

        signed_reveal = self._sign_reveal(batch, built)

        if not batch.no_backup and batch.key is None:
            backup_recovery_key(self.wallet, built.recovery_key_pair, self.chain.value)

        if batch.no_broadcast:
            commit = self.wallet.decode_txid(signed_commit) if signed_commit is not None else None
            reveal = self.wallet.decode_txid(signed_reveal)
        else:
            commit, reveal = self._broadcast(batch, signed_commit, signed_reveal, built)

        recovery = None
        if batch.dump:
            recovery = describe_recovery_key(self.wallet, built.recovery_key_pair, self.chain.value)

        return batch_output(
            batch,
            commit,
            reveal,
            built.total_fees,
            commit_hex=signed_commit if batch.dump else None,
            reveal_hex=signed_reveal if batch.dump and not batch.commit_only else None,
            recovery_descriptor=recovery,
        )

    def _sign_reveal(self, batch: Batch, built: BatchTransactions) -> str:
        """Let the wallet sign the parent and extra reveal inputs, if any."""
        prevouts = []

        if batch.parent_info is not None:
            commit_txid = built.commit_tx.txid
            for vout, txout in enumerate(built.commit_tx.outputs):
                prevouts.append((OutPoint(commit_txid, vout), txout))

        for outpoint, txout in zip(batch.reveal_inputs, built.reveal_input_outputs):
            prevouts.append((outpoint, txout))

        if batch.parent_info is None and not prevouts:
            return built.reveal_tx.hex()

        return self.wallet.sign_transaction(built.reveal_tx, prevouts)

    def _broadcast(self, batch: Batch, signed_commit: Optional[str], signed_reveal: str,
                   built: BatchTransactions) -> Tuple[Optional[str], str]:
        commit = None
        if signed_commit is not None:
            commit = self.wallet.broadcast(signed_commit)
            self.logger.info(f"Broadcast commit transaction {commit}")

        if batch.commit_only:
            return commit, built.reveal_tx.txid

        try:
            reveal = self.wallet.broadcast(signed_reveal)
        except Exception as e:
            message = f"Failed to send reveal transaction: {e}"
            if commit is not None:
                message += f"\nCommit tx {commit} will be recovered once mined"
            raise BroadcastError(message, commit_txid=commit) from e

        self.logger.info(f"Broadcast reveal transaction {reveal}")
        return commit, reveal
