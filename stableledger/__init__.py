"""
stableledger - Over-collateralized stablecoin accounting engine

Tracks collateral deposits and minted stablecoin per account, values
collateral through validated price feeds, and keeps every account above a
minimum health factor. Unsafe accounts can be liquidated by third parties.

Usage:
    from stableledger import (
        CollateralLedger, LogicalClock, MockAggregator, StaleCheckedFeed,
        StableToken, Token, to_wei,
    )

    clock = LogicalClock()
    eth_usd = MockAggregator(decimals=8, initial_answer=4000 * 10**8, clock=clock)
    weth = Token("WETH", "Wrapped Ether")
    dsc = StableToken(owner="engine")

    ledger = CollateralLedger([weth], [StaleCheckedFeed(eth_usd)], dsc, address="engine")

    weth.mint("alice", to_wei(10))
    weth.approve("alice", "engine", to_wei(10))
    ledger.deposit_and_mint("alice", "WETH", to_wei(10), to_wei(100))
    ledger.health_factor("alice")   # 200 * 10**18
"""

import logging

# Core types
from .core import (
    # Constants
    PRECISION,
    ADDITIONAL_FEED_PRECISION,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_PRECISION,
    LIQUIDATION_BONUS,
    MIN_HEALTH_FACTOR,
    MAX_HEALTH_FACTOR,
    MAX_UINT256,
    DEFAULT_ORACLE_TIMEOUT,
    DEFAULT_RISK_PARAMETERS,
    # Data
    PriceQuote,
    AccountInformation,
    CollateralDeposited,
    CollateralRedeemed,
    RiskParameters,
    # Protocols
    PriceFeed,
    CollateralToken,
    LiabilityToken,
    SupportsSnapshot,
    EngineView,
    # Exceptions
    EngineError,
    InvalidAmount,
    UnknownCollateralType,
    DuplicateCollateralType,
    ConstructorArityMismatch,
    TransferFailed,
    MintFailed,
    InsufficientBalance,
    InsufficientAllowance,
    NotOwner,
    ArithmeticOverflow,
    ReentrantCall,
    HealthFactorTooLow,
    HealthFactorOK,
    HealthFactorNotImproved,
    OracleError,
    StalePrice,
    InvalidPrice,
    # Helpers
    calculate_health_factor,
    to_wei,
    from_wei,
)

# Price feeds
from .oracle import LogicalClock, RoundData, MockAggregator, StaleCheckedFeed

# Pricing
from .pricing import PriceResolver, calculate_usd_value, calculate_token_amount

# Tokens
from .tokens import Token, StableToken

# Engine
from .engine import CollateralLedger, Settlement

# Liquidation
from .liquidation import (
    LiquidationQuote,
    LiquidationResult,
    calculate_bonus_collateral,
    compute_liquidation_quote,
    liquidate,
    find_liquidatable_accounts,
)

# Stress simulation
from .simulation import (
    PricePath,
    PricePathGenerator,
    StressStep,
    StressReport,
    LiquidationAttempt,
    price_to_answer,
    run_stress_scenario,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Constants
    'PRECISION', 'ADDITIONAL_FEED_PRECISION', 'LIQUIDATION_THRESHOLD',
    'LIQUIDATION_PRECISION', 'LIQUIDATION_BONUS', 'MIN_HEALTH_FACTOR',
    'MAX_HEALTH_FACTOR', 'MAX_UINT256', 'DEFAULT_ORACLE_TIMEOUT', 'DEFAULT_RISK_PARAMETERS',
    # Data
    'PriceQuote', 'AccountInformation', 'CollateralDeposited', 'CollateralRedeemed',
    'RiskParameters',
    # Protocols
    'PriceFeed', 'CollateralToken', 'LiabilityToken', 'SupportsSnapshot', 'EngineView',
    # Exceptions
    'EngineError', 'InvalidAmount', 'UnknownCollateralType', 'DuplicateCollateralType',
    'ConstructorArityMismatch', 'TransferFailed', 'MintFailed', 'InsufficientBalance',
    'InsufficientAllowance', 'NotOwner', 'ArithmeticOverflow', 'ReentrantCall',
    'HealthFactorTooLow', 'HealthFactorOK', 'HealthFactorNotImproved',
    'OracleError', 'StalePrice', 'InvalidPrice',
    # Helpers
    'calculate_health_factor', 'to_wei', 'from_wei',
    # Price feeds
    'LogicalClock', 'RoundData', 'MockAggregator', 'StaleCheckedFeed',
    # Pricing
    'PriceResolver', 'calculate_usd_value', 'calculate_token_amount',
    # Tokens
    'Token', 'StableToken',
    # Engine
    'CollateralLedger',
    'Settlement',
    # Liquidation
    'LiquidationQuote', 'LiquidationResult', 'calculate_bonus_collateral',
    'compute_liquidation_quote', 'liquidate', 'find_liquidatable_accounts',
    # Stress simulation
    'PricePath', 'PricePathGenerator', 'StressStep', 'StressReport',
    'LiquidationAttempt', 'price_to_answer', 'run_stress_scenario',
]

__version__ = '1.0.0'
