import asyncio

import pytest

from scen.scen_comptroller import _send, get_batch_size, get_borrow_cap, get_btoken_v
from scen.scen_errors import MalformedValue
from scen.scen_runtime import ScenarioRunner
from scen.scen_values import NumberV
from scen.scen_world import Contract, World, ZERO_ADDRESS

from conftest import ADMIN, BBAT, BZRX, COBURN, COMPTROLLER, E18, GEOFF, TORREY, stdout_lines


@pytest.mark.asyncio
async def test_support_enter_and_liquidity_end_to_end(runner, ledger):
    ledger.liquidity[GEOFF] = (0, 3 * E18, E18)
    result = await runner.handle_script(
        "Comptroller SupportMarket bZRX\n"
        "From Geoff (Comptroller EnterMarkets (bZRX))\n"
        "Comptroller Liquidity\n"
    )
    assert result.status == 'success', result.format_error()
    assert len(result.actions) == 2
    assert [s.kind for s in result.steps] == ['command', 'command', 'view']
    assert [a.description for a in result.actions] == [
        "Supported market bZRX",
        f"Called enter assets (bZRX) as Geoff ({GEOFF})",
    ]
    assert ledger.methods() == ["_supportMarket", "enterMarkets"]
    assert result.value == {GEOFF: NumberV(2 * E18, 18)}
    assert stdout_lines(result) == ["Liquidity:", "\tGeoff: 2e18", "Total: 2e18"]


@pytest.mark.asyncio
async def test_support_collateral_factor_then_liquidity(runner, ledger):
    for account in (GEOFF, TORREY):
        ledger.events.append({'target': COMPTROLLER, 'event': 'MarketEntered',
                              'returnValues': {'bToken': BZRX, 'account': account.upper().replace("0X", "0x")}})
    ledger.liquidity[GEOFF] = (0, 25 * 10 ** 16, 0)
    result = await runner.handle_script(
        "Comptroller SupportMarket bZRX\n"
        "Comptroller SetCollateralFactor bZRX 0.1\n"
        "Comptroller Liquidity\n"
    )
    assert result.status == 'success', result.format_error()
    assert [a.description for a in result.actions] == [
        "Supported market bZRX",
        "Set collateral factor for bZRX to 0.1e18",
    ]
    assert [s.kind for s in result.steps] == ['command', 'command', 'view']
    assert result.value == {GEOFF: NumberV(25 * 10 ** 16, 18), TORREY: NumberV(0, 18)}
    assert stdout_lines(result)[1:] == ["\tGeoff: 0.25e18", "\tTorrey: 0e18", "Total: 0.25e18"]


@pytest.mark.asyncio
async def test_liquidity_lists_each_account_once(runner, ledger):
    ledger.liquidity[GEOFF] = (0, E18, 0)
    ledger.liquidity[TORREY] = (0, 0, E18 // 2)
    result = await runner.handle_script(
        "From Geoff (Comptroller EnterMarkets (bZRX))\n"
        "From Geoff (Comptroller EnterMarkets (bBAT))\n"
        "From Torrey (Comptroller EnterMarkets (bZRX bBAT))\n"
        "Comptroller Liquidity\n"
    )
    assert list(result.value) == [GEOFF, TORREY]
    assert stdout_lines(result) == ["Liquidity:", "\tGeoff: 1e18", "\tTorrey: -0.5e18", "Total: 0.5e18"]


@pytest.mark.asyncio
async def test_liquidity_read_failure_halts(runner, ledger):
    ledger.liquidity[GEOFF] = (9, 0, 0)
    result = await runner.handle_script(
        "From Geoff (Comptroller EnterMarkets (bZRX))\n"
        "Comptroller Liquidity\n"
    )
    assert result.error_kind == "ExternalInvocationFailure"
    assert "MARKET_NOT_LISTED" in result.error_message
    assert result.error_line == 2
    assert len(result.actions) == 1


@pytest.mark.asyncio
async def test_liquidity_failure_cancels_outstanding_reads(runner, ledger):
    ledger.liquidity[GEOFF] = (9, 0, 0)
    read_account = ledger.call
    stalled = []

    async def call(call):
        if call.args[0] == TORREY:
            stalled.append(asyncio.current_task())
            await asyncio.Event().wait()
        return await read_account(call)

    ledger.call = call
    result = await runner.handle_script(
        "From Geoff (Comptroller EnterMarkets (bZRX))\n"
        "From Torrey (Comptroller EnterMarkets (bZRX))\n"
        "Comptroller Liquidity\n"
    )
    assert result.error_kind == "ExternalInvocationFailure"
    assert len(stalled) == 1
    for _ in range(3):
        await asyncio.sleep(0)
    assert stalled[0].cancelled()


@pytest.mark.asyncio
async def test_failed_call_halts_with_decoded_error(runner, ledger):
    ledger.failures["_supportMarket"] = {'error': 10, 'info': 17, 'detail': 0}
    result = await runner.handle_script("Comptroller SupportMarket bZRX\nPrint never")
    assert result.status == 'error'
    assert result.error_kind == "ExternalInvocationFailure"
    assert "MARKET_ALREADY_LISTED: SUPPORT_MARKET_EXISTS" in result.error_message
    assert result.error_line == 1
    assert len(result.actions) == 1
    assert result.actions[0].invokation.failed
    assert stdout_lines(result) == []
    assert runner.world is result.world


@pytest.mark.asyncio
async def test_dry_run_logs_skipped_action(runner, ledger):
    result = await runner.handle_script(
        "DryRun (Comptroller SupportMarket bZRX)\n"
        "Comptroller SetCollateralFactor bZRX 0.1\n"
    )
    assert result.status == 'success', result.format_error()
    assert [a.description for a in result.actions] == [
        "Dry run: skipped Supported market bZRX",
        "Set collateral factor for bZRX to 0.1e18",
    ]
    assert ledger.sent[0][0].args == (BZRX, "100000000000000000")
    assert len(ledger.sent) == 1
    assert not result.world.is_dry_run()


@pytest.mark.asyncio
async def test_dry_run_still_reads(runner, ledger):
    ledger.events.append({'target': COMPTROLLER, 'event': 'MarketEntered',
                          'returnValues': {'bToken': BZRX, 'account': GEOFF}})
    result = await runner.handle_script("DryRun (Comptroller Liquidity)")
    assert result.steps[0].kind == 'view'
    assert result.value == {GEOFF: NumberV(0, 18)}


@pytest.mark.asyncio
async def test_deploy_registers_new_comptroller(runner, ledger):
    result = await runner.handle_script("Comptroller Deploy\nComptroller SupportMarket bZRX")
    deployed = "0x" + "0" * 39 + "1"
    assert result.status == 'success', result.format_error()
    assert result.actions[0].description == f"Added Comptroller () at address {deployed}"
    assert ledger.deployed == [("Comptroller", [], ADMIN)]
    assert ledger.sent[0][0].target == deployed


@pytest.mark.asyncio
async def test_dry_run_deploy_uses_zero_address(runner, ledger):
    result = await runner.handle_script("DryRun (Comptroller Deploy)")
    assert ledger.deployed == []
    assert result.world.find_contract("Comptroller").address == ZERO_ADDRESS
    assert result.actions[0].description == f"Dry run: skipped Added Comptroller () at address {ZERO_ADDRESS}"


@pytest.mark.asyncio
async def test_missing_comptroller(ledger):
    world = World(contracts=(Contract("bZRX", "BToken", BZRX),), default_from=ADMIN, invoker=ledger)
    result = await ScenarioRunner(world=world).handle_script("Comptroller SupportMarket bZRX")
    assert result.error_kind == "NoMatchingOverload"
    assert "MissingImplicitArgument" in result.error_message
    assert ledger.sent == []


@pytest.mark.asyncio
async def test_unknown_market(runner, ledger):
    result = await runner.handle_script("Comptroller SupportMarket bNOPE")
    assert result.error_kind == "NoMatchingOverload"
    assert ledger.sent == []


@pytest.mark.asyncio
async def test_claim_bai_overloads(runner, ledger):
    result = await runner.handle_script(
        "Comptroller ClaimBai Geoff\n"
        "Comptroller ClaimBai Geoff (bZRX bBAT)\n"
    )
    assert result.status == 'success', result.format_error()
    assert [call.args for call, _ in ledger.sent] == [(GEOFF,), (GEOFF, [BZRX, BBAT])]
    assert [a.description for a in result.actions] == [
        "Bai claimed by Geoff",
        "Bai claimed by Geoff in (bZRX bBAT)",
    ]


@pytest.mark.asyncio
async def test_claim_bai_batch_chunks_holders(runner, ledger):
    extra = "0x" + "5" * 40
    result = await runner.handle_script(f"Comptroller ClaimBaiBatch (Geoff Torrey Coburn Admin {extra}) bZRX 2")
    assert result.status == 'success', result.format_error()
    calls = [call for call, _ in ledger.sent]
    assert [len(c.args[0]) for c in calls] == [2, 2, 1]
    assert calls[0].args == ([GEOFF, TORREY], [BZRX], True, False)
    assert calls[2].args[0] == [extra]
    assert len(result.actions) == 1
    assert result.actions[0].description == "Bai claimed for 5 holder(s) of bZRX in 3 batch(es) of 2"
    assert len([line for line in stdout_lines(result) if line.startswith("Sending tx to claim bZRX")]) == 3


@pytest.mark.asyncio
async def test_claim_bai_batch_default_size(runner, ledger):
    await runner.handle_script("Comptroller ClaimBaiBatch (Geoff Torrey Coburn) bBAT")
    assert len(ledger.sent) == 1
    assert ledger.sent[0][0].args[0] == [GEOFF, TORREY, COBURN]


@pytest.mark.asyncio
async def test_claim_bai_batch_stops_at_first_failure(runner, ledger):
    ledger.failures["claimBai"] = {'error': 1}
    result = await runner.handle_script("Comptroller ClaimBaiBatch (Geoff Torrey Coburn) bZRX 1")
    assert len(ledger.sent) == 1
    assert result.error_kind == "ExternalInvocationFailure"
    assert "UNAUTHORIZED" in result.error_message
    assert len(result.actions) == 1


@pytest.mark.asyncio
async def test_claim_bai_batch_rejects_bad_size(runner, ledger):
    result = await runner.handle_script("Comptroller ClaimBaiBatch (Geoff) bZRX 0")
    assert result.error_kind == "NoMatchingOverload"
    assert ledger.sent == []


@pytest.mark.asyncio
async def test_set_market_borrow_caps(runner, ledger):
    result = await runner.handle_script("Comptroller SetMarketBorrowCaps ((bZRX 10000e18) (bBAT 1000))")
    assert result.status == 'success', result.format_error()
    call = ledger.sent[0][0]
    assert call.method == "_setMarketBorrowCaps"
    assert call.args == ([BZRX, BBAT], [str(10000 * E18), "1000"])
    assert result.actions[0].description == f"Borrow caps on (bZRX bBAT) set to ({10000 * E18} 1000)"


@pytest.mark.asyncio
async def test_send_arbitrary_signature(runner, ledger):
    result = await runner.handle_script('Comptroller Send "setBaiAddress(address)" (Address Geoff)')
    assert result.status == 'success', result.format_error()
    call = ledger.sent[0][0]
    assert (call.method, call.args) == ("setBaiAddress(address)", (GEOFF,))
    assert result.actions[0].description == "Sent setBaiAddress(address) to Comptroller"


@pytest.mark.asyncio
async def test_fast_forward(runner, ledger):
    result = await runner.handle_script("Comptroller FastForward 5 Blocks")
    assert result.actions[0].description == "Fast forward 5 blocks to #100005"


@pytest.mark.asyncio
@pytest.mark.parametrize("line, method, args", [
    ("Comptroller SetProtocolPaused True", "_setProtocolPaused", (True,)),
    ("Comptroller UnList bBAT", "unlist", (BBAT,)),
    ("Comptroller ExitMarket bZRX", "exitMarket", (BZRX,)),
    ("Comptroller SetMaxAssets 4", "_setMaxAssets", ("4",)),
    ("Comptroller LiquidationIncentive 1.1", "_setLiquidationIncentive", ("1100000000000000000",)),
    ("Comptroller SetCloseFactor 20%", "_setCloseFactor", ("200000000000000000",)),
    ("Comptroller SetPriceOracle Torrey", "_setPriceOracle", (TORREY,)),
    ("Comptroller SetPendingAdmin Geoff", "_setPendingAdmin", (GEOFF,)),
    ("Comptroller AddBaiMarkets (bZRX bBAT)", "_addBaiMarkets", ([BZRX, BBAT],)),
    ("Comptroller DropBaiMarket bZRX", "_dropBaiMarket", (BZRX,)),
    ("Comptroller RefreshBaiSpeeds", "refreshBaiSpeeds", ()),
    ("Comptroller SetBaiRate 1e18", "_setBaiRate", (str(E18),)),
    ("Comptroller SetBaiSpeed bZRX 1000", "_setBaiSpeed", (BZRX, "1000")),
    ("Comptroller SetBorrowCapGuardian Coburn", "_setBorrowCapGuardian", (COBURN,)),
])
async def test_commands_send_expected_calls(runner, ledger, line, method, args):
    result = await runner.handle_script(line)
    assert result.status == 'success', result.format_error()
    call, from_ = ledger.sent[0]
    assert (call.target, call.method, call.args) == (COMPTROLLER, method, args)
    assert from_ == ADMIN
    assert len(result.actions) == 1


# --- Getters ---

def test_get_btoken_v(world):
    assert get_btoken_v(world, "bZRX").address == BZRX
    assert get_btoken_v(world, BBAT).name == "bBAT"
    with pytest.raises(MalformedValue):
        get_btoken_v(world, "Comptroller")
    with pytest.raises(MalformedValue):
        get_btoken_v(world, ["bZRX"])


def test_get_borrow_cap(world):
    pair = get_borrow_cap(world, ["bZRX", "10"])
    assert pair[0].name == "bZRX" and pair[1] == NumberV(10)
    with pytest.raises(MalformedValue):
        get_borrow_cap(world, "bZRX")


@pytest.mark.parametrize("bad", ["0", "-1", "1.5"])
def test_get_batch_size_rejects(world, bad):
    with pytest.raises(MalformedValue):
        get_batch_size(world, bad)


@pytest.mark.asyncio
async def test_failures_decode_with_the_target_kind_reporter(world, ledger):
    ledger.failures["mint"] = {'error': 3}
    ledger.failures["_setMaxAssets"] = {'error': 3}
    token = await _send(world, ADMIN, world.find_contract("bZRX", kind="BToken"), "mint", "1")
    assert token.error.code == "COMPTROLLER_REJECTION"
    comptroller = await _send(world, ADMIN, world.find_contract("Comptroller"), "_setMaxAssets", "5")
    assert comptroller.error.code == "INSUFFICIENT_SHORTFALL"
