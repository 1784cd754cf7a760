"""
The Comptroller command module.

Every command here targets the most recently registered Comptroller (an
implicit argument) and routes its failures through the Comptroller error
reporter.
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, List

from scen.scen_chunks import get_chunks
from scen.scen_command import Arg, Command, Effect, View
from scen.scen_errors import ExternalInvocationFailure, MalformedValue
from scen.scen_invoke import CallDescriptor, invoke, invoke_deploy, past_events, read
from scen.scen_reporter import reporter_for
from scen.scen_values import (
    EXP_SCALE,
    ListV,
    NumberV,
    get_address_v,
    get_bool_v,
    get_core_value,
    get_event_v,
    get_exp_number_v,
    get_number_v,
    get_percent_v,
    get_string_v,
    raw_values,
)
from scen.scen_world import ZERO_ADDRESS, Contract, World, contract_resolver

DEFAULT_CLAIM_BATCH = 100

get_comptroller = contract_resolver("Comptroller")


# ===================================================================
# Getters
# ===================================================================

def get_btoken_v(world: World, token) -> Contract:
    """A registered BToken, by name or address."""
    if not isinstance(token, str):
        raise MalformedValue("BToken", token, "expected a single token, not a list")
    contract = world.find_contract(token, kind="BToken")
    if contract is None:
        raise MalformedValue("BToken", token, "no such market has been registered")
    return contract


def get_borrow_cap(world: World, token) -> ListV:
    """`(bZRX 1000e18)` -> ListV([market, cap])."""
    if not isinstance(token, list) or len(token) != 2:
        raise MalformedValue("(<BToken> <Number>) pair", token)
    return ListV([get_btoken_v(world, token[0]), get_number_v(world, token[1])])


def get_batch_size(world: World, token) -> NumberV:
    size = get_number_v(world, token)
    if size.val != size.val.to_integral_value() or size.val <= 0:
        raise MalformedValue("positive whole batch size", token)
    return size


# ===================================================================
# Handlers
# ===================================================================

async def _send(world: World, from_, comptroller: Contract, method: str, *args) -> Any:
    call = CallDescriptor(comptroller.address, method, tuple(args))
    return await invoke(world, call, from_, reporter_for(comptroller.kind))


async def gen_comptroller(world, from_, args):
    params = args['params']
    invokation = await invoke_deploy(world, "Comptroller", params.encode(), from_, reporter_for("Comptroller"))
    if invokation.failed:
        return Effect(world, f"Deploy Comptroller ({params.show()})", invokation)
    address = ZERO_ADDRESS if invokation.skipped else str(invokation.value).lower()
    contract = Contract("Comptroller", "Comptroller", address)
    return Effect(
        world.with_contract(contract),
        f"Added Comptroller ({params.show()}) at address {address}",
        invokation,
    )


async def set_protocol_paused(world, from_, args):
    paused = args['isPaused']
    invokation = await _send(world, from_, args['comptroller'], "_setProtocolPaused", paused.encode())
    return Effect(world, f"Comptroller: set protocol paused to {paused.show()}", invokation)


async def support_market(world, from_, args):
    b_token = args['bToken']
    invokation = await _send(world, from_, args['comptroller'], "_supportMarket", b_token.address)
    return Effect(world, f"Supported market {b_token.name}", invokation)


async def unlist_market(world, from_, args):
    b_token = args['bToken']
    invokation = await _send(world, from_, args['comptroller'], "unlist", b_token.address)
    return Effect(world, f"Unlisted market {b_token.name}", invokation)


async def enter_markets(world, from_, args):
    b_tokens = args['bTokens']
    invokation = await _send(world, from_, args['comptroller'], "enterMarkets", raw_values(b_tokens))
    return Effect(
        world,
        f"Called enter assets {b_tokens.show()} as {world.describe_user(from_)}",
        invokation,
    )


async def exit_market(world, from_, args):
    b_token = args['bToken']
    invokation = await _send(world, from_, args['comptroller'], "exitMarket", b_token.address)
    return Effect(world, f"Called exit market {b_token.name} as {world.describe_user(from_)}", invokation)


async def set_max_assets(world, from_, args):
    max_assets = args['maxAssets']
    invokation = await _send(world, from_, args['comptroller'], "_setMaxAssets", max_assets.encode())
    return Effect(world, f"Set max assets to {max_assets.show()}", invokation)


async def set_liquidation_incentive(world, from_, args):
    incentive = args['liquidationIncentive']
    invokation = await _send(world, from_, args['comptroller'], "_setLiquidationIncentive", incentive.encode())
    return Effect(world, f"Set liquidation incentive to {incentive.show()}", invokation)


async def set_price_oracle(world, from_, args):
    oracle = args['priceOracle']
    invokation = await _send(world, from_, args['comptroller'], "_setPriceOracle", oracle.encode())
    return Effect(
        world,
        f"Set price oracle to {world.lookup_alias(oracle.val)} as {world.describe_user(from_)}",
        invokation,
    )


async def set_collateral_factor(world, from_, args):
    b_token, factor = args['bToken'], args['collateralFactor']
    invokation = await _send(world, from_, args['comptroller'], "_setCollateralFactor",
                             b_token.address, factor.encode())
    return Effect(world, f"Set collateral factor for {b_token.name} to {factor.show()}", invokation)


async def set_close_factor(world, from_, args):
    close_factor = args['closeFactor']
    invokation = await _send(world, from_, args['comptroller'], "_setCloseFactor", close_factor.encode())
    return Effect(world, f"Set close factor to {close_factor.show()}", invokation)


async def set_pending_admin(world, from_, args):
    admin = args['newPendingAdmin']
    invokation = await _send(world, from_, args['comptroller'], "_setPendingAdmin", admin.encode())
    return Effect(
        world,
        f"Comptroller: {world.describe_user(from_)} sets pending admin to {world.lookup_alias(admin.val)}",
        invokation,
    )


async def accept_admin(world, from_, args):
    invokation = await _send(world, from_, args['comptroller'], "_acceptAdmin")
    return Effect(world, f"Comptroller: {world.describe_user(from_)} accepts admin", invokation)


async def fast_forward(world, from_, args):
    blocks = args['blocks']
    invokation = await _send(world, from_, args['comptroller'], "fastForward", blocks.encode())
    return Effect(world, f"Fast forward {blocks.show()} blocks to #{invokation.value}", invokation)


async def send_any(world, from_, args):
    signature = args['signature'].val
    call_args = raw_values(args['callArgs'])
    invokation = await _send(world, from_, args['comptroller'], signature, *call_args)
    return Effect(world, f"Sent {signature} to Comptroller", invokation)


async def add_bai_markets(world, from_, args):
    b_tokens = args['bTokens']
    invokation = await _send(world, from_, args['comptroller'], "_addBaiMarkets", raw_values(b_tokens))
    return Effect(world, f"Added Bai markets {b_tokens.show()}", invokation)


async def drop_bai_market(world, from_, args):
    b_token = args['bToken']
    invokation = await _send(world, from_, args['comptroller'], "_dropBaiMarket", b_token.address)
    return Effect(world, f"Drop Bai market {b_token.name}", invokation)


async def refresh_bai_speeds(world, from_, args):
    invokation = await _send(world, from_, args['comptroller'], "refreshBaiSpeeds")
    return Effect(world, "Refreshed Bai speeds", invokation)


async def claim_bai(world, from_, args):
    holder = args['holder']
    invokation = await _send(world, from_, args['comptroller'], "claimBai", holder.encode())
    return Effect(world, f"Bai claimed by {world.lookup_alias(holder.val)}", invokation)


async def claim_bai_in(world, from_, args):
    holder, b_tokens = args['holder'], args['bTokens']
    invokation = await _send(world, from_, args['comptroller'], "claimBai",
                             holder.encode(), raw_values(b_tokens))
    return Effect(
        world,
        f"Bai claimed by {world.lookup_alias(holder.val)} in {b_tokens.show()}",
        invokation,
    )


async def claim_bai_batch(world, from_, args):
    holders, b_token = list(args['holders']), args['bToken']
    size = int(args['batch'].val)
    chunks = get_chunks(holders, size)
    if not chunks:
        world.emit(f"No holders to claim for {b_token.name}")
        return Effect(world, f"No Bai claims for {b_token.name}")

    invokations = []
    for chunk in chunks:
        world.emit(f"Sending tx to claim {b_token.name} for {', '.join(h.show() for h in chunk)}")
        invokation = await _send(world, from_, args['comptroller'], "claimBai",
                                 raw_values(chunk), [b_token.address], True, False)
        invokations.append(invokation)
        if invokation.failed:
            break
    return Effect(
        world,
        f"Bai claimed for {len(holders)} holder(s) of {b_token.name} in {len(invokations)} batch(es) of {size}",
        tuple(invokations),
    )


async def set_bai_rate(world, from_, args):
    rate = args['rate']
    invokation = await _send(world, from_, args['comptroller'], "_setBaiRate", rate.encode())
    return Effect(world, f"Bai rate set to {rate.show()}", invokation)


async def set_bai_speed(world, from_, args):
    b_token, speed = args['bToken'], args['speed']
    invokation = await _send(world, from_, args['comptroller'], "_setBaiSpeed",
                             b_token.address, speed.encode())
    return Effect(world, f"Bai speed for market {b_token.name} set to {speed.show()}", invokation)


async def set_market_borrow_caps(world, from_, args):
    caps = args['borrowCaps']
    markets = [pair[0] for pair in caps]
    amounts = [pair[1] for pair in caps]
    invokation = await _send(world, from_, args['comptroller'], "_setMarketBorrowCaps",
                             raw_values(markets), raw_values(amounts))
    return Effect(
        world,
        f"Borrow caps on ({' '.join(m.show() for m in markets)}) set to ({' '.join(a.show() for a in amounts)})",
        invokation,
    )


async def set_borrow_cap_guardian(world, from_, args):
    guardian = args['newBorrowCapGuardian']
    invokation = await _send(world, from_, args['comptroller'], "_setBorrowCapGuardian", guardian.encode())
    return Effect(
        world,
        f"Comptroller: {world.describe_user(from_)} sets borrow cap guardian to {world.lookup_alias(guardian.val)}",
        invokation,
    )


async def get_liquidity(world: World, comptroller: Contract, account: str) -> NumberV:
    """Liquidity minus shortfall of `account`, as an exp number."""
    raw = await read(world, CallDescriptor(comptroller.address, "getAccountLiquidity", (account,)))
    error, liquidity, shortfall = raw
    if str(error) != "0":
        decoded = reporter_for(comptroller.kind).decode({'error': error})
        raise ExternalInvocationFailure(decoded.code, decoded.detail, f"getAccountLiquidity({account})")
    return NumberV(Decimal(str(liquidity)) - Decimal(str(shortfall)), EXP_SCALE)


async def print_liquidity(world, args) -> Dict[str, NumberV]:
    comptroller = args['comptroller']
    events = await past_events(world, comptroller.address, "MarketEntered")
    accounts: List[str] = []
    for event in events:
        values = event.get('returnValues', event)
        account = str(values['account']).lower()
        if account not in accounts:
            accounts.append(account)

    world.emit("Liquidity:")
    # Reads only; results are merged after every branch completes
    tasks = [asyncio.ensure_future(get_liquidity(world, comptroller, a)) for a in accounts]
    try:
        results = await asyncio.gather(*tasks)
    except BaseException:
        # The first failure wins; the other reads are abandoned
        for task in tasks:
            task.cancel()
        raise

    liquidity = dict(zip(accounts, results))
    for account, value in liquidity.items():
        world.emit(f"\t{world.lookup_alias(account)}: {value.show()}")
    total = sum(liquidity.values(), NumberV(0, EXP_SCALE))
    world.emit(f"Total: {total.show()}")
    return liquidity


# ===================================================================
# Command table
# ===================================================================

def comptroller_commands() -> List[Command]:
    comptroller = Arg("comptroller", get_comptroller, implicit=True)
    return [
        Command("""
            #### Deploy

            * "Comptroller Deploy ...comptrollerParams" - Generates a new Comptroller
              * E.g. "Comptroller Deploy YesNo"
            """,
            "Deploy",
            [Arg("params", get_event_v, variadic=True)],
            gen_comptroller,
        ),
        Command("""
            #### SetProtocolPaused

            * "Comptroller SetProtocolPaused <Bool>" - Pauses or unpauses the protocol
              * E.g. "Comptroller SetProtocolPaused True"
            """,
            "SetProtocolPaused",
            [comptroller, Arg("isPaused", get_bool_v)],
            set_protocol_paused,
        ),
        Command("""
            #### SupportMarket

            * "Comptroller SupportMarket <BToken>" - Adds support in the Comptroller for the given bToken
              * E.g. "Comptroller SupportMarket bZRX"
            """,
            "SupportMarket",
            [comptroller, Arg("bToken", get_btoken_v)],
            support_market,
        ),
        Command("""
            #### UnList

            * "Comptroller UnList <BToken>" - Mock unlists a given market in tests
              * E.g. "Comptroller UnList bZRX"
            """,
            "UnList",
            [comptroller, Arg("bToken", get_btoken_v)],
            unlist_market,
        ),
        Command("""
            #### EnterMarkets

            * "Comptroller EnterMarkets (<BToken> ...)" - User enters the given markets
              * E.g. "Comptroller EnterMarkets (bZRX bBNB)"
            """,
            "EnterMarkets",
            [comptroller, Arg("bTokens", get_btoken_v, mapped=True)],
            enter_markets,
        ),
        Command("""
            #### ExitMarket

            * "Comptroller ExitMarket <BToken>" - User exits the given market
              * E.g. "Comptroller ExitMarket bZRX"
            """,
            "ExitMarket",
            [comptroller, Arg("bToken", get_btoken_v)],
            exit_market,
        ),
        Command("""
            #### SetMaxAssets

            * "Comptroller SetMaxAssets <Number>" - Sets (or resets) the max allowed asset count
              * E.g. "Comptroller SetMaxAssets 4"
            """,
            "SetMaxAssets",
            [comptroller, Arg("maxAssets", get_number_v)],
            set_max_assets,
        ),
        Command("""
            #### LiquidationIncentive

            * "Comptroller LiquidationIncentive <Number>" - Sets the liquidation incentive
              * E.g. "Comptroller LiquidationIncentive 1.1"
            """,
            "LiquidationIncentive",
            [comptroller, Arg("liquidationIncentive", get_exp_number_v)],
            set_liquidation_incentive,
        ),
        Command("""
            #### SetPriceOracle

            * "Comptroller SetPriceOracle oracle:<Address>" - Sets the price oracle address
              * E.g. "Comptroller SetPriceOracle 0x..."
            """,
            "SetPriceOracle",
            [comptroller, Arg("priceOracle", get_address_v)],
            set_price_oracle,
        ),
        Command("""
            #### SetCollateralFactor

            * "Comptroller SetCollateralFactor <BToken> <Number>" - Sets the collateral factor for given bToken
              * E.g. "Comptroller SetCollateralFactor bZRX 0.1"
            """,
            "SetCollateralFactor",
            [comptroller, Arg("bToken", get_btoken_v), Arg("collateralFactor", get_exp_number_v)],
            set_collateral_factor,
        ),
        Command("""
            #### SetCloseFactor

            * "Comptroller SetCloseFactor <Number>" - Sets the close factor to given percentage
              * E.g. "Comptroller SetCloseFactor 0.2"
            """,
            "SetCloseFactor",
            [comptroller, Arg("closeFactor", get_percent_v)],
            set_close_factor,
        ),
        Command("""
            #### SetPendingAdmin

            * "Comptroller SetPendingAdmin newPendingAdmin:<Address>" - Sets the pending admin
              * E.g. "Comptroller SetPendingAdmin Geoff"
            """,
            "SetPendingAdmin",
            [comptroller, Arg("newPendingAdmin", get_address_v)],
            set_pending_admin,
        ),
        Command("""
            #### AcceptAdmin

            * "Comptroller AcceptAdmin" - Accepts admin for the Comptroller
              * E.g. "From Geoff (Comptroller AcceptAdmin)"
            """,
            "AcceptAdmin",
            [comptroller],
            accept_admin,
        ),
        Command("""
            #### FastForward

            * "Comptroller FastForward n:<Number> Blocks" - Moves the mocked block number forward n blocks
              * E.g. "Comptroller FastForward 5 Blocks"
            """,
            "FastForward",
            [comptroller, Arg("blocks", get_number_v), Arg("_keyword", get_string_v)],
            fast_forward,
        ),
        View("""
            #### Liquidity

            * "Comptroller Liquidity" - Prints liquidity of all minters or borrowers
            """,
            "Liquidity",
            [comptroller],
            print_liquidity,
        ),
        Command("""
            #### Send

            * "Comptroller Send functionSignature:<String> callArgs[]" - Sends any transaction to the Comptroller
              * E.g. "Comptroller Send "setBaiAddress(address)" (Address Bai)"
            """,
            "Send",
            [comptroller, Arg("signature", get_string_v), Arg("callArgs", get_core_value, variadic=True, mapped=True)],
            send_any,
        ),
        Command("""
            #### AddBaiMarkets

            * "Comptroller AddBaiMarkets (<BToken> ...)" - Makes markets Bai-enabled
              * E.g. "Comptroller AddBaiMarkets (bZRX bBAT)"
            """,
            "AddBaiMarkets",
            [comptroller, Arg("bTokens", get_btoken_v, mapped=True)],
            add_bai_markets,
        ),
        Command("""
            #### DropBaiMarket

            * "Comptroller DropBaiMarket <BToken>" - Removes a market from Bai distribution
              * E.g. "Comptroller DropBaiMarket bZRX"
            """,
            "DropBaiMarket",
            [comptroller, Arg("bToken", get_btoken_v)],
            drop_bai_market,
        ),
        Command("""
            #### RefreshBaiSpeeds

            * "Comptroller RefreshBaiSpeeds" - Recalculates all the Bai market speeds
            """,
            "RefreshBaiSpeeds",
            [comptroller],
            refresh_bai_speeds,
        ),
        Command("""
            #### ClaimBai

            * "Comptroller ClaimBai <holder>" - Claims Bai
              * E.g. "Comptroller ClaimBai Geoff"
            """,
            "ClaimBai",
            [comptroller, Arg("holder", get_address_v)],
            claim_bai,
        ),
        Command("""
            #### ClaimBai

            * "Comptroller ClaimBai <holder> (<BToken> ...)" - Claims Bai in the given markets only
              * E.g. "Comptroller ClaimBai Geoff (bZRX)"
            """,
            "ClaimBai",
            [comptroller, Arg("holder", get_address_v), Arg("bTokens", get_btoken_v, mapped=True)],
            claim_bai_in,
        ),
        Command("""
            #### ClaimBaiBatch

            * "Comptroller ClaimBaiBatch (<holder> ...) <BToken> [batch]" - Claims Bai for many holders,
              `batch` holders per call (default 100)
              * E.g. "Comptroller ClaimBaiBatch (Geoff Torrey Coburn) bZRX 2"
            """,
            "ClaimBaiBatch",
            [
                comptroller,
                Arg("holders", get_address_v, mapped=True),
                Arg("bToken", get_btoken_v),
                Arg("batch", get_batch_size, default=NumberV(DEFAULT_CLAIM_BATCH)),
            ],
            claim_bai_batch,
        ),
        Command("""
            #### SetBaiRate

            * "Comptroller SetBaiRate <rate>" - Sets Bai rate
              * E.g. "Comptroller SetBaiRate 1e18"
            """,
            "SetBaiRate",
            [comptroller, Arg("rate", get_number_v)],
            set_bai_rate,
        ),
        Command("""
            #### SetBaiSpeed

            * "Comptroller SetBaiSpeed <bToken> <rate>" - Sets Bai speed for market
              * E.g. "Comptroller SetBaiSpeed bZRX 1000"
            """,
            "SetBaiSpeed",
            [comptroller, Arg("bToken", get_btoken_v), Arg("speed", get_number_v)],
            set_bai_speed,
        ),
        Command("""
            #### SetMarketBorrowCaps

            * "Comptroller SetMarketBorrowCaps ((<BToken> <borrowCap>) ...)" - Sets market borrow caps
              * E.g. "Comptroller SetMarketBorrowCaps ((bZRX 10000.0e18) (bUSDC 1000.0e6))"
            """,
            "SetMarketBorrowCaps",
            [comptroller, Arg("borrowCaps", get_borrow_cap, mapped=True)],
            set_market_borrow_caps,
        ),
        Command("""
            #### SetBorrowCapGuardian

            * "Comptroller SetBorrowCapGuardian newBorrowCapGuardian:<Address>" - Sets the borrow cap guardian
              * E.g. "Comptroller SetBorrowCapGuardian Geoff"
            """,
            "SetBorrowCapGuardian",
            [comptroller, Arg("newBorrowCapGuardian", get_address_v)],
            set_borrow_cap_guardian,
        ),
    ]
