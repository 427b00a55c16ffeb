"""
Ledger, seed and payout bindings against mocked HTTP endpoints.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from fairplay.config import AppConfig
from fairplay.core.exceptions import LedgerUnavailable, SeedUnavailable
from fairplay.core.ledger import InMemoryLedger, RpcLedger, TransferStatus
from fairplay.core.rpc import RpcError, SolanaRpcClient
from fairplay.core.scheduler import PayoutWorker
from fairplay.core.seed_source import RpcSeedSource
from fairplay.core.transport import LedgerTransport, RemoteApiTransport, select_transport


def rpc_result(request, result):
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def blockhash_result(request):
    return rpc_result(request, {"context": {"slot": 42}, "value": {"blockhash": "Hash42"}})


# ==================== RPC client ====================

@pytest.mark.asyncio
async def test_rpc_rotates_to_fallback_endpoint():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if request.url.host == "primary":
            return httpx.Response(503)
        return blockhash_result(request)

    client = SolanaRpcClient(["http://primary", "http://fallback"], transport=httpx.MockTransport(handler))
    seed = await RpcSeedSource(client).get_public_seed()

    assert seed == ("Hash42", 42)
    assert hosts == ["primary", "fallback"]
    assert client.url == "http://fallback"
    await client.close()


@pytest.mark.asyncio
async def test_rpc_all_endpoints_down():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = SolanaRpcClient(["http://a", "http://b"], transport=httpx.MockTransport(handler))
    with pytest.raises(LedgerUnavailable):
        await client.call("getSlot")
    with pytest.raises(SeedUnavailable):
        await RpcSeedSource(client).get_public_seed()
    await client.close()


@pytest.mark.asyncio
async def test_rpc_error_object_does_not_rotate():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1,
                                         "error": {"code": -32602, "message": "Invalid param"}})

    client = SolanaRpcClient(["http://a", "http://b"], transport=httpx.MockTransport(handler))
    with pytest.raises(RpcError) as excinfo:
        await client.call("getBalance", ["bad"])
    assert excinfo.value.code == -32602
    assert client.url == "http://a"
    await client.close()


@pytest.mark.asyncio
async def test_malformed_blockhash_is_unavailable():
    client = SolanaRpcClient(["http://a"], transport=httpx.MockTransport(lambda r: rpc_result(r, {"value": {}})))
    with pytest.raises(SeedUnavailable):
        await RpcSeedSource(client).get_public_seed()
    await client.close()


# ==================== RPC ledger ====================

STATUSES = {
    "unknown": None,
    "errored": {"err": {"InstructionError": [0, "Custom"]}, "confirmationStatus": "confirmed"},
    "processed": {"err": None, "confirmationStatus": "processed"},
    "finalized": {"err": None, "confirmationStatus": "finalized"},
}


def system_transfer(source, destination, lamports):
    return {"program": "system", "parsed": {"type": "transfer", "info": {
        "source": source, "destination": destination, "lamports": lamports}}}


TRANSACTIONS = {
    "funded": {"meta": {"err": None}, "transaction": {"message": {"instructions": [
        {"program": "spl-memo", "parsed": "w1"},
        system_transfer("Player", "HouseWallet", 1_000_000_000),
    ]}}},
    "short": {"meta": {"err": None}, "transaction": {"message": {"instructions": [
        system_transfer("Player", "HouseWallet", 999_999_999),
    ]}}},
    "reverted": {"meta": {"err": {"InstructionError": [0, "Custom"]}}, "transaction": {"message": {
        "instructions": [system_transfer("Player", "HouseWallet", 1_000_000_000)]}}},
    "unknown": None,
}


def rpc_ledger_handler(request):
    body = json.loads(request.content)
    if body["method"] == "getBalance":
        return rpc_result(request, {"context": {"slot": 1}, "value": 1_500_000_000})
    if body["method"] == "getSignatureStatuses":
        signature = body["params"][0][0]
        return rpc_result(request, {"context": {"slot": 1}, "value": [STATUSES.get(signature)]})
    if body["method"] == "getTransaction":
        return rpc_result(request, TRANSACTIONS[body["params"][0]])
    if body["method"] == "getBlockHeight":
        return rpc_result(request, 500)
    return httpx.Response(404)


@pytest.fixture
def rpc_ledger():
    signed = []

    def signer(request):
        signed.append(json.loads(request.content))
        return httpx.Response(200, json={"signature": "sig-from-signer"})

    client = SolanaRpcClient(["http://rpc"], transport=httpx.MockTransport(rpc_ledger_handler))
    ledger = RpcLedger(client, "HouseWallet", "http://signer/", transport=httpx.MockTransport(signer))
    ledger.signed = signed
    return ledger


@pytest.mark.asyncio
async def test_rpc_ledger_balance_in_sol(rpc_ledger):
    assert await rpc_ledger.get_balance("HouseWallet") == 1.5
    await rpc_ledger.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "signature, expected",
    [
        ("unknown", TransferStatus.PENDING),
        ("errored", TransferStatus.FAILED),
        ("processed", TransferStatus.PENDING),
        ("finalized", TransferStatus.CONFIRMED),
    ],
)
async def test_rpc_ledger_transfer_status(rpc_ledger, signature, expected):
    assert await rpc_ledger.confirm_transfer(signature) == expected
    await rpc_ledger.close()


@pytest.mark.asyncio
async def test_rpc_ledger_submits_lamports_to_signer(rpc_ledger):
    reference = await rpc_ledger.submit_transfer("HouseWallet", "Player", 0.25, memo="w1")
    assert reference == "sig-from-signer"
    assert rpc_ledger.signed == [
        {"from": "HouseWallet", "to": "Player", "lamports": 250_000_000, "memo": "w1"}
    ]
    await rpc_ledger.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "signature, sender, expected",
    [
        ("funded", "Player", True),
        ("funded", "Stranger", False),
        ("short", "Player", False),
        ("reverted", "Player", False),
        ("unknown", "Player", None),
    ],
)
async def test_rpc_ledger_verifies_escrow_transfer(rpc_ledger, signature, sender, expected):
    assert await rpc_ledger.verify_transfer(signature, sender, "HouseWallet", 1.0) is expected
    await rpc_ledger.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("valid_until, expected", [(499, TransferStatus.FAILED), (500, TransferStatus.PENDING)])
async def test_rpc_ledger_expired_transfer_fails(valid_until, expected):
    signer = httpx.MockTransport(
        lambda r: httpx.Response(200, json={"signature": "dropped", "lastValidBlockHeight": valid_until})
    )
    client = SolanaRpcClient(["http://rpc"], transport=httpx.MockTransport(rpc_ledger_handler))
    ledger = RpcLedger(client, "HouseWallet", "http://signer", transport=signer)

    reference = await ledger.submit_transfer("HouseWallet", "Player", 1.0)
    assert await ledger.confirm_transfer(reference) == expected
    await ledger.close()


@pytest.mark.asyncio
async def test_rpc_ledger_signer_refusal():
    client = SolanaRpcClient(["http://rpc"], transport=httpx.MockTransport(rpc_ledger_handler))
    refusing = httpx.MockTransport(lambda r: httpx.Response(500, json={"error": "locked"}))
    ledger = RpcLedger(client, "HouseWallet", "http://signer", transport=refusing)
    with pytest.raises(LedgerUnavailable):
        await ledger.submit_transfer("HouseWallet", "Player", 1.0)
    await ledger.close()


# ==================== Payout transports ====================

@pytest.mark.asyncio
async def test_remote_transport_posts_payout_body():
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "signature": "remote-sig"})

    ledger = InMemoryLedger("house", {"house": 3.0})
    transport = RemoteApiTransport(ledger, "http://payouts/api/payout", fee_reserve=0.5,
                                   transport=httpx.MockTransport(handler))

    assert await transport.send("w1", "player", 1.0, blockhash="hash", slot=7) == "remote-sig"
    assert received == [{"playerWallet": "player", "amount": 1.0, "gameId": "w1",
                         "blockhash": "hash", "slot": 7}]
    assert await transport.available_balance() == 2.5
    await transport.close()


@pytest.mark.asyncio
async def test_remote_transport_refusal():
    handler = lambda r: httpx.Response(500, json={"success": False, "error": "Insufficient house balance"})
    transport = RemoteApiTransport(InMemoryLedger(), "http://payouts", transport=httpx.MockTransport(handler))
    with pytest.raises(LedgerUnavailable, match="Insufficient house balance"):
        await transport.send("w1", "player", 1.0)
    await transport.close()


@pytest.mark.asyncio
async def test_ledger_transport_without_house_has_no_balance():
    transport = LedgerTransport(InMemoryLedger(house_address=""))
    assert await transport.available_balance() is None


def test_select_transport():
    config = AppConfig()
    ledger = InMemoryLedger()
    assert select_transport(config, ledger).name == "ledger"

    config.payout.transport = "remote"
    assert isinstance(select_transport(config, ledger), RemoteApiTransport)

    config.payout.transport = "carrier-pigeon"
    with pytest.raises(ValueError):
        select_transport(config, ledger)


# ==================== Payout worker ====================

@pytest.mark.asyncio
async def test_worker_registers_jobs():
    worker = PayoutWorker(MagicMock(), AppConfig().scheduler)
    worker.start()
    try:
        ids = {job.id for job in worker.scheduler.get_jobs()}
        assert ids == {"drain_payouts", "cancel_expired_escrows", "resume_pending"}
    finally:
        worker.shutdown()


@pytest.mark.asyncio
async def test_worker_jobs_survive_errors():
    coordinator = MagicMock()
    coordinator.drain_payout_queue = AsyncMock(side_effect=RuntimeError("db locked"))
    coordinator.resume_pending = AsyncMock(return_value=2)
    worker = PayoutWorker(coordinator, AppConfig().scheduler)

    await worker.drain_payouts()
    await worker.resume_pending()
    coordinator.resume_pending.assert_awaited_once()
