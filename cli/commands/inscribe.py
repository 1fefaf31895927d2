"""
Inscription Commands for the Inscribe CLI

`file` inscribes a single file, `batch` inscribes everything a YAML batch
file lists and `request` serves a JSON inscribe request. All three build a
Batch and hand it to BatchInscriber with a Bitcoin Core wallet behind it.
"""

import logging
import tempfile
from typing import Any, Dict, List, Optional, Tuple

import click

from cli.main import CLIContext, handle_cli_error, pass_context
from crypto.recovery import load_or_create_temporary_key
from inscribe.address import Chain, address_to_script
from inscribe.batch import DEFAULT_POSTAGE, Batch, Mode, ParentInfo, output_policy
from inscribe.batchfile import (
    Batchfile,
    InscribeRequest,
    metadata_from_cbor_file,
    metadata_from_json_file,
)
from inscribe.engine import BatchInscriber
from inscribe.envelope import Inscription
from inscribe.exceptions import ConfigurationError
from inscribe.fees import FeeRate
from inscribe.transaction import InscriptionId, OutPoint, SatPoint
from network.rpc import BitcoinRPCClient, RPCConfig
from network.wallet import InscriptionStateFile, RPCWallet


logger = logging.getLogger('inscribe-cli.inscribe')


def _parse(parser, value, what: str):
    if value is None:
        return None
    try:
        return parser(value)
    except ValueError as e:
        raise click.BadParameter(f"invalid {what} `{value}`: {e}")


def outpoint_type(ctx, param, value):
    if isinstance(value, tuple):
        return tuple(_parse(OutPoint.parse, v, 'outpoint') for v in value)
    return _parse(OutPoint.parse, value, 'outpoint')


def satpoint_type(ctx, param, value):
    return _parse(SatPoint.parse, value, 'satpoint')


def inscription_id_type(ctx, param, value):
    return _parse(InscriptionId.parse, value, 'inscription id')


def check_run_flags(commit_only: bool, commitment: Optional[OutPoint], key: Optional[str],
                    next_batch: Optional[str], next_file: Optional[str],
                    reveal_input: Tuple[OutPoint, ...]):
    """Reject flag combinations before touching the wallet."""
    if commitment is not None and key is None:
        raise ConfigurationError("--commitment only works with --key")

    if commit_only and commitment is not None:
        raise ConfigurationError("--commit-only and --commitment don't work together")

    if next_batch is not None and next_file is not None:
        raise ConfigurationError("--next-batch and --next-file don't work together")

    if commit_only and (next_batch is not None or next_file is not None):
        raise ConfigurationError("--commit-only and --next-batch/--next-file don't work together")

    if commitment is None and reveal_input:
        raise ConfigurationError("--reveal-input only works with --commitment")


def parse_metadata(json_metadata: Optional[str], cbor_metadata: Optional[str]) -> Optional[bytes]:
    """CBOR metadata from a --json-metadata or --cbor-metadata file."""
    if json_metadata and cbor_metadata:
        raise ConfigurationError("--json-metadata and --cbor-metadata don't work together")
    if cbor_metadata:
        return metadata_from_cbor_file(cbor_metadata)
    if json_metadata:
        return metadata_from_json_file(json_metadata)
    return None


def batch_options(func):
    """Options shared by the `file` and `batch` commands."""
    options = [
        click.option('--fee-rate', type=float, help='Reveal fee rate in sat/vB (defaults to inscribe.fee_rate)'),
        click.option('--commit-fee-rate', type=float, help='Commit fee rate in sat/vB (defaults to --fee-rate)'),
        click.option('--change', help='Send commit change to this address'),
        click.option('--json-metadata', '--metadata', 'json_metadata', type=click.Path(exists=True, dir_okay=False),
                     help='JSON file converted to CBOR and stored as inscription metadata'),
        click.option('--cbor-metadata', type=click.Path(exists=True, dir_okay=False),
                     help='CBOR file stored as inscription metadata'),
        click.option('--parent-destination', help='Return the parent inscription to this address'),
        click.option('--dry-run', is_flag=True, help="Don't sign or broadcast transactions"),
        click.option('--no-backup', is_flag=True, help='Do not back up the recovery key'),
        click.option('--no-limit', is_flag=True,
                     help='Do not enforce the 400,000 weight unit standard transaction limit'),
        click.option('--commit-only', is_flag=True,
                     help='Only create the commit transaction; implies --no-backup'),
        click.option('--commitment', callback=outpoint_type,
                     help='Reveal the commitment at this outpoint instead of creating a commit transaction'),
        click.option('--key', help='WIF key used for the commitment instead of a random one'),
        click.option('--reveal-input', multiple=True, callback=outpoint_type,
                     help='Extra reveal input, for use with --commitment'),
        click.option('--reveal-fee', type=int, help='Explicit reveal fee in sats'),
        click.option('--next-file', type=click.Path(exists=True, dir_okay=False),
                     help='Commit the reveal change to the contents of this file'),
        click.option('--next-batch', type=click.Path(exists=True, dir_okay=False),
                     help='Commit the reveal change to the inscriptions of this batch file'),
        click.option('--commit-input', multiple=True, callback=outpoint_type,
                     help='Extra commit input, e.g. to force CPFP'),
        click.option('--utxo', multiple=True, callback=outpoint_type,
                     help='Consider spending this outpoint even if the wallet does not list it'),
        click.option('--commit-vsize', type=int, help='Use this vsize for the commit fee'),
        click.option('--dump', is_flag=True, help='Output raw transactions and the recovery descriptor'),
        click.option('--no-broadcast', is_flag=True, help='Do not broadcast; implies --dump'),
        click.option('--state-file', type=click.Path(exists=True, dir_okay=False),
                     help='JSON inscription state (defaults to inscribe.state_file)'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


class InscribeSession:
    """
    Wallet connection and shared settings for one command invocation.
    """

    def __init__(self, ctx: CLIContext, state_file: Optional[str] = None):
        self.ctx = ctx
        self.chain: Chain = ctx.chain_type

        config = RPCConfig(
            host=ctx.get_config('network.rpc_host', 'localhost'),
            port=ctx.get_config('network.rpc_port'),
            username=ctx.get_config('network.rpc_user'),
            password=ctx.get_config('network.rpc_password'),
            cookie_file=ctx.get_config('network.rpc_cookie_file'),
            wallet=ctx.get_config('network.rpc_wallet'),
            chain=self.chain.value,
            timeout=ctx.get_config('network.rpc_timeout', 30),
        )
        self.client = BitcoinRPCClient(config)
        self.wallet = RPCWallet(self.client)
        self.state = InscriptionStateFile(state_file or ctx.get_config('inscribe.state_file'))

    def close(self):
        self.client.close()

    def address(self, address: Optional[str]) -> bytes:
        """Script of ``address``, or of a fresh wallet change address."""
        return address_to_script(address or self.wallet.get_change_address(), self.chain)

    def parent_info(self, parent: Optional[InscriptionId], parent_satpoint: Optional[SatPoint] = None,
                    destination: Optional[str] = None, wallet_owned: bool = True) -> Optional[ParentInfo]:
        """
        Locate the parent inscription and decide where it goes.

        Args:
            parent: Parent inscription id
            parent_satpoint: Parent location, when the state file does not know it
            destination: Address the parent is returned to
            wallet_owned: Require the parent to be in the wallet; otherwise it is
                returned to its current owner

        Returns:
            ParentInfo, or None without a parent
        """
        if parent is None:
            return None

        satpoint = parent_satpoint or self.state.find_inscription(parent)
        if satpoint is None:
            raise ConfigurationError(f"parent {parent} does not exist")

        tx_out = self.wallet.get_transaction_output(satpoint.outpoint)

        if wallet_owned:
            if satpoint.outpoint not in self.wallet.get_unspent_outputs():
                raise ConfigurationError(f"parent {parent} not in wallet")
            script = self.address(destination)
        else:
            script = tx_out.script_pubkey

        return ParentInfo(destination=script, id=parent, location=satpoint, tx_out=tx_out)

    def load_batchfile(self, path: str, metadata: Optional[bytes], parent_destination: Optional[str]):
        """Inscriptions, destinations, parent and postage of a batch file."""
        batchfile = Batchfile.load(path)

        if batchfile.sat is not None:
            raise ConfigurationError("`sat` needs a sat index, which is not available; use `satpoint`")

        parent_info = self.parent_info(
            batchfile.parent_id,
            SatPoint.parse(batchfile.parent_satpoint) if batchfile.parent_satpoint else None,
            parent_destination,
        )
        postage = batchfile.postage or DEFAULT_POSTAGE

        inscriptions, destinations = batchfile.inscriptions_for(
            self.chain,
            parent_value=parent_info.tx_out.value if parent_info else None,
            metadata=metadata,
            postage=postage,
        )
        destinations = [dest if dest is not None else self.address(None) for dest in destinations]
        return batchfile, inscriptions, destinations, parent_info, postage

    def next_inscriptions(self, next_file: Optional[str], next_batch: Optional[str],
                          parent: Optional[InscriptionId], metaprotocol: Optional[str],
                          metadata: Optional[bytes], parent_destination: Optional[str]) -> List[Inscription]:
        if next_file:
            return [Inscription.from_file(next_file, parent=parent, metaprotocol=metaprotocol, metadata=metadata)]
        if next_batch:
            return self.load_batchfile(next_batch, metadata, parent_destination)[1]
        return []


def _fee_rates(ctx: CLIContext, fee_rate: Optional[float],
               commit_fee_rate: Optional[float]) -> Tuple[FeeRate, FeeRate]:
    reveal = fee_rate if fee_rate is not None else ctx.get_config('inscribe.fee_rate', 1.0)
    commit = commit_fee_rate if commit_fee_rate is not None else ctx.get_config('inscribe.commit_fee_rate', reveal)
    try:
        return FeeRate(float(commit)), FeeRate(float(reveal))
    except ValueError as e:
        raise ConfigurationError(str(e))


def _report(output: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unset fields from a batch report."""
    return {key: value for key, value in output.items() if value is not None and value != []}


def _run_batch(ctx: CLIContext, session: InscribeSession, options: Dict[str, Any],
               inscriptions: List[Inscription], mode: Mode, destinations: List[bytes],
               postage: int, parent_info: Optional[ParentInfo], satpoint: Optional[SatPoint],
               reinscribe: bool, next_inscriptions: List[Inscription]) -> Dict[str, Any]:
    commit_fee_rate, reveal_fee_rate = _fee_rates(ctx, options['fee_rate'], options['commit_fee_rate'])

    commitment = options['commitment']
    commitment_output = session.wallet.get_transaction_output(commitment) if commitment else None

    batch = Batch(
        inscriptions=inscriptions,
        outputs=output_policy(mode, destinations, len(inscriptions)),
        commit_fee_rate=commit_fee_rate,
        reveal_fee_rate=reveal_fee_rate,
        postage=postage,
        parent_info=parent_info,
        satpoint=satpoint,
        reinscribe=reinscribe,
        no_limit=options['no_limit'],
        commit_only=options['commit_only'],
        dry_run=options['dry_run'],
        no_backup=options['no_backup'],
        dump=options['dump'],
        no_broadcast=options['no_broadcast'],
        commitment=commitment,
        commitment_output=commitment_output,
        reveal_inputs=options['reveal_input'],
        key=options['key'],
        reveal_fee=options['reveal_fee'],
        next_inscriptions=next_inscriptions,
        force_inputs=options['commit_input'],
        commit_vsize=options['commit_vsize'],
    )

    inscriber = BatchInscriber(session.wallet, session.state, session.chain)
    output = inscriber.inscribe(batch, change_address=options['change'], extra_utxos=options['utxo'])
    return _report(output.to_dict())


def _check(options: Dict[str, Any]):
    check_run_flags(options['commit_only'], options['commitment'], options['key'],
                    options['next_batch'], options['next_file'], options['reveal_input'])


@click.command('file')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--destination', help='Send the inscription to this address')
@click.option('--postage', type=int, help='Postage in sats (defaults to inscribe.postage)')
@click.option('--satpoint', callback=satpoint_type, help='Inscribe this satpoint')
@click.option('--parent', callback=inscription_id_type, help='Make the inscription a child of this inscription')
@click.option('--parent-satpoint', callback=satpoint_type, help='Satpoint of the parent, if not yet indexed')
@click.option('--metaprotocol', help='Metaprotocol tag')
@click.option('--reinscribe', is_flag=True, help='Allow reinscription')
@batch_options
@pass_context
@handle_cli_error
def file(ctx: CLIContext, path: str, destination: Optional[str], postage: Optional[int],
         satpoint: Optional[SatPoint], parent: Optional[InscriptionId],
         parent_satpoint: Optional[SatPoint], metaprotocol: Optional[str], reinscribe: bool,
         **options):
    """
    Inscribe the contents of PATH.

    Examples:
        inscribe file --fee-rate 4 hello.txt
        inscribe --chain signet file --fee-rate 2 --destination tb1p... image.png
    """
    _check(options)
    metadata = parse_metadata(options['json_metadata'], options['cbor_metadata'])

    session = InscribeSession(ctx, options['state_file'])
    try:
        parent_info = session.parent_info(parent, parent_satpoint, options['parent_destination'])
        inscriptions = [Inscription.from_file(path, parent=parent, metaprotocol=metaprotocol, metadata=metadata)]
        next_inscriptions = session.next_inscriptions(
            options['next_file'], options['next_batch'], parent, metaprotocol, metadata,
            options['parent_destination'],
        )

        result = _run_batch(
            ctx, session, options, inscriptions, Mode.SEPARATE_OUTPUTS, [session.address(destination)],
            postage or ctx.get_config('inscribe.postage', DEFAULT_POSTAGE),
            parent_info, satpoint, reinscribe, next_inscriptions,
        )
    finally:
        session.close()

    ctx.output(result)


@click.command('batch')
@click.argument('batchfile', type=click.Path(exists=True, dir_okay=False))
@batch_options
@pass_context
@handle_cli_error
def batch(ctx: CLIContext, batchfile: str, **options):
    """
    Inscribe every entry of the YAML BATCHFILE.

    Examples:
        inscribe batch --fee-rate 4 batch.yaml
        inscribe batch --fee-rate 4 --dry-run batch.yaml
    """
    _check(options)
    metadata = parse_metadata(options['json_metadata'], options['cbor_metadata'])

    session = InscribeSession(ctx, options['state_file'])
    try:
        loaded, inscriptions, destinations, parent_info, postage = session.load_batchfile(
            batchfile, metadata, options['parent_destination']
        )
        next_inscriptions = session.next_inscriptions(
            options['next_file'], options['next_batch'], loaded.parent_id, None, metadata,
            options['parent_destination'],
        )

        result = _run_batch(
            ctx, session, options, inscriptions, loaded.mode, destinations, postage, parent_info,
            SatPoint.parse(loaded.satpoint) if loaded.satpoint else None, False, next_inscriptions,
        )
    finally:
        session.close()

    ctx.output(result)


@click.command('request')
@click.argument('request_file', type=click.File('r'))
@click.option('--fee-rate', type=float, help='Fee rate in sat/vB (defaults to inscribe.fee_rate)')
@click.option('--commit-fee-rate', type=float, help='Commit fee rate in sat/vB (defaults to --fee-rate)')
@click.option('--postage', type=int, help='Postage in sats (defaults to inscribe.postage)')
@click.option('--state-file', type=click.Path(exists=True, dir_okay=False),
              help='JSON inscription state (defaults to inscribe.state_file)')
@pass_context
@handle_cli_error
def request(ctx: CLIContext, request_file, fee_rate: Optional[float], commit_fee_rate: Optional[float],
            postage: Optional[int], state_file: Optional[str]):
    """
    Serve a JSON inscribe request read from REQUEST_FILE ('-' for stdin).

    Content is fetched from the request's URLs; the first inscription utxo
    carries the inscribed sats and the fee utxos pay for the commit. Nothing
    is broadcast: the signed transactions are printed.
    """
    inscribe_request = InscribeRequest.parse_json(request_file.read())
    commit_rate, reveal_rate = _fee_rates(ctx, fee_rate, commit_fee_rate)
    postage = postage or ctx.get_config('inscribe.postage', DEFAULT_POSTAGE)

    session = InscribeSession(ctx, state_file)
    try:
        key = load_or_create_temporary_key(ctx.get_config('inscribe.data_dir', '~/.inscribe'),
                                           session.chain.value)
        logger.info("Using temporary key from the data directory")

        parent_info = session.parent_info(inscribe_request.parent_id, wallet_owned=False)
        utxos = inscribe_request.utxos

        with tempfile.TemporaryDirectory(prefix="inscribe-request-") as directory:
            files = inscribe_request.fetch(directory)
            inscriptions, destinations = inscribe_request.inscriptions_for(
                session.chain, files,
                parent_value=parent_info.tx_out.value if parent_info else None,
                postage=postage,
            )

        batch_config = Batch(
            inscriptions=inscriptions,
            outputs=output_policy(Mode.SEPARATE_OUTPUTS, destinations, len(inscriptions)),
            commit_fee_rate=commit_rate,
            reveal_fee_rate=reveal_rate,
            postage=postage,
            parent_info=parent_info,
            satpoint=SatPoint(utxos[0], 0),
            no_backup=True,
            dump=True,
            no_broadcast=True,
            key=key,
            force_inputs=tuple(inscribe_request.fee_outpoints) + tuple(utxos[1:]),
            commit_vsize=inscribe_request.commit_vsize,
        )

        inscriber = BatchInscriber(session.wallet, session.state, session.chain)
        output = inscriber.inscribe(batch_config, extra_utxos=utxos + inscribe_request.fee_outpoints)
    finally:
        session.close()

    result = _report(output.to_dict())
    if inscribe_request.reveal_psbt is not None:
        result['reveal_psbt'] = inscribe_request.reveal_psbt
    ctx.output(result)
