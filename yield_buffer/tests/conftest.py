#!/usr/bin/env python3
"""Shared fixtures for the yield buffer test suite"""

import pytest

from yield_buffer.core.boundary import PriceState
from yield_buffer.core.uniswap_v3_math import Q96
from yield_buffer.core.vaults import VaultRegistry
from yield_buffer.core.yield_vault import YieldVault
from yield_buffer.engine.config import BufferConfig, ControllerSettings
from yield_buffer.engine.controller import YieldBufferController

POOL_ID = "USDC:WETH"
MANAGER = "manager"


class StubHost:
    """HostEngine double: on-hand balances are set by the test, transfers are recorded"""

    def __init__(self):
        self.balances = {}
        self.custody = {}
        self.donations = []
        self.transfers = []
        self.price = PriceState(
            sqrt_price_x96=Q96, tick=0, liquidity=10 ** 18,
            tick_lower=-60, tick_upper=60, fee_pips=3000
        )

    def on_hand_balance(self, pool_id, asset):
        return self.balances.get(asset, 0)

    def price_state(self, pool_id):
        return self.price

    def donate(self, pool_id, amount_a, amount_b):
        self.donations.append((pool_id, amount_a, amount_b))

    def take(self, pool_id, asset, amount):
        self.transfers.append(("take", asset, amount))
        self.custody[asset] = self.custody.get(asset, 0) - amount

    def settle(self, pool_id, asset, amount):
        self.transfers.append(("settle", asset, amount))
        self.custody[asset] = self.custody.get(asset, 0) + amount

    def revert_donation(self, pool_id, amount_a, amount_b):
        self.donations.remove((pool_id, amount_a, amount_b))

    def net_custody(self):
        """Custody change per asset after all transfers, undo calls included"""
        return {asset: amount for asset, amount in self.custody.items() if amount}


def fund_position(position, idle, vaulted):
    """Put `idle` in custody and `vaulted` into the position's vault; principal = total"""
    position.idle_balance = idle
    if vaulted:
        position.share_balance = position.vault.deposit(vaulted)
    position.tracked_principal = idle + vaulted


@pytest.fixture
def host():
    return StubHost()


@pytest.fixture
def usdc_vault():
    return YieldVault("USDC", apr=0.0)


@pytest.fixture
def weth_vault():
    return YieldVault("WETH", apr=0.0)


@pytest.fixture
def controller(host, usdc_vault, weth_vault):
    registry = VaultRegistry({"USDC": usdc_vault, "WETH": weth_vault})
    ctrl = YieldBufferController(host, registry, ControllerSettings(MANAGER, BufferConfig()))
    ctrl.on_pool_created(POOL_ID, "USDC", "WETH")
    return ctrl


@pytest.fixture
def state(controller):
    return controller.store.get(POOL_ID)


@pytest.fixture
def fund():
    return fund_position
