"""Static instrument registry and ticker-to-exchange mapping."""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

DEFAULT_EXCHANGE = "US"

# Tickers listed somewhere other than the default exchange, e.g. "VOD.L": "L"
TICKER_EXCHANGE_MAP: Dict[str, str] = {
    "SHEL": "US",  # Shell ADR
}


def exchange_for_ticker(ticker: str) -> str:
    if "." in ticker and ticker not in TICKER_EXCHANGE_MAP:
        # Provider-style suffix: BMW.DE -> DE, VOD.L -> L
        return ticker.rsplit(".", 1)[1].upper()
    return TICKER_EXCHANGE_MAP.get(ticker, DEFAULT_EXCHANGE)


@dataclass(frozen=True)
class Instrument:
    ticker: str
    name: str
    sector: str
    initial_price: float
    exchange: str = DEFAULT_EXCHANGE


# (ticker, name, sector, initial price). Established names with reliable quotes.
LIVE_ASSETS: List[Tuple[str, str, str, float]] = [
    ("AAPL", "Apple Inc.", "Technology", 182.52),
    ("MSFT", "Microsoft", "Technology", 378.85),
    ("GOOGL", "Alphabet", "Technology", 138.21),
    ("AMZN", "Amazon", "Consumer", 127.74),
    ("TSLA", "Tesla", "Automotive", 256.24),
    ("META", "Meta", "Technology", 311.71),
    ("NVDA", "NVIDIA", "Technology", 521.88),
    ("JPM", "JP Morgan", "Financial", 147.35),
    ("V", "Visa", "Financial", 247.12),
    ("JNJ", "Johnson & J", "Healthcare", 158.19),
    ("WMT", "Walmart", "Retail", 163.42),
    ("PG", "Procter & G", "Consumer", 152.38),
    ("MA", "Mastercard", "Financial", 401.22),
    ("UNH", "UnitedHealth", "Healthcare", 521.13),
    ("DIS", "Disney", "Entertainment", 91.8),
    ("NFLX", "Netflix", "Entertainment", 481.73),
    ("ADBE", "Adobe", "Technology", 589.27),
    ("CRM", "Salesforce", "Technology", 221.49),
    ("PFE", "Pfizer", "Healthcare", 28.92),
    ("TMO", "Thermo Fisher", "Healthcare", 547.38),
    ("CSCO", "Cisco", "Technology", 49.67),
    ("ORCL", "Oracle", "Technology", 106.84),
    ("INTC", "Intel", "Technology", 43.65),
    ("IBM", "IBM", "Technology", 140.28),
    ("BAC", "Bank of America", "Financial", 31.82),
    ("C", "Citigroup", "Financial", 45.33),
    ("GS", "Goldman Sachs", "Financial", 394.11),
    ("MS", "Morgan Stanley", "Financial", 85.27),
    ("HD", "Home Depot", "Retail", 328.4),
    ("LOW", "Lowe's", "Retail", 205.55),
    ("KO", "Coca-Cola", "Consumer", 58.73),
    ("PEP", "PepsiCo", "Consumer", 172.66),
    ("NKE", "Nike", "Consumer", 97.42),
    ("MCD", "McDonald's", "Consumer", 257.88),
    ("SBUX", "Starbucks", "Consumer", 88.11),
    ("COST", "Costco", "Retail", 684.92),
    ("T", "AT&T", "Telecom", 16.24),
    ("VZ", "Verizon", "Telecom", 39.77),
    ("XOM", "Exxon Mobil", "Energy", 115.6),
    ("CVX", "Chevron", "Energy", 158.95),
    ("SHEL", "Shell plc", "Energy", 66.12),
    ("AMD", "Advanced Micro Devices", "Technology", 117.53),
    ("AVGO", "Broadcom", "Technology", 1289.4),
    ("QCOM", "Qualcomm", "Technology", 134.22),
    ("TXN", "Texas Instruments", "Technology", 168.37),
    ("BMY", "Bristol-Myers Squibb", "Healthcare", 45.91),
    ("ABBV", "AbbVie", "Healthcare", 165.74),
    ("MRK", "Merck & Co.", "Healthcare", 122.18),
    ("BA", "Boeing", "Industrial", 196.44),
    ("GE", "GE Aerospace", "Industrial", 164.3),
]

# Extra names shown only in simulation
SIMULATION_ONLY_ASSETS: List[Tuple[str, str, str, float]] = [
    ("SNOW", "Snowflake", "Technology", 145.32),
    ("DDOG", "Datadog", "Technology", 89.45),
    ("NET", "Cloudflare", "Technology", 62.18),
    ("ZM", "Zoom", "Technology", 68.91),
    ("UBER", "Uber", "Transportation", 58.34),
    ("LYFT", "Lyft", "Transportation", 12.67),
    ("ABNB", "Airbnb", "Consumer", 128.56),
    ("SQ", "Block", "Financial", 54.23),
    ("PYPL", "PayPal", "Financial", 59.87),
    ("SHOP", "Shopify", "Technology", 67.45),
    ("SPOT", "Spotify", "Entertainment", 187.23),
    ("ROKU", "Roku", "Entertainment", 71.34),
    ("TWLO", "Twilio", "Technology", 56.78),
    ("DOCU", "DocuSign", "Technology", 48.92),
    ("CRWD", "CrowdStrike", "Cybersecurity", 198.45),
    ("PANW", "Palo Alto Networks", "Cybersecurity", 287.56),
    ("ZS", "Zscaler", "Cybersecurity", 142.89),
    ("NOW", "ServiceNow", "Technology", 678.34),
    ("WDAY", "Workday", "Technology", 234.12),
    ("TEAM", "Atlassian", "Technology", 176.89),
    ("MDB", "MongoDB", "Technology", 298.45),
    ("PLTR", "Palantir", "Technology", 18.67),
    ("RBLX", "Roblox", "Gaming", 34.56),
    ("U", "Unity Software", "Gaming", 28.91),
    ("EA", "Electronic Arts", "Gaming", 124.78),
    ("TTWO", "Take-Two Interactive", "Gaming", 142.33),
    ("F", "Ford", "Automotive", 11.89),
    ("GM", "General Motors", "Automotive", 34.56),
    ("TM", "Toyota", "Automotive", 178.92),
    ("RIVN", "Rivian", "EV", 13.45),
    ("LCID", "Lucid", "EV", 3.28),
    ("NIO", "Nio", "EV", 6.73),
    ("LI", "Li Auto", "EV", 26.84),
    ("XPEV", "XPeng", "EV", 10.92),
    ("ON", "ON Semiconductor", "Semiconductors", 68.45),
    ("MU", "Micron", "Semiconductors", 87.34),
    ("AMAT", "Applied Materials", "Semiconductors", 156.78),
    ("LRCX", "Lam Research", "Semiconductors", 689.23),
    ("KLAC", "KLA Corp", "Semiconductors", 567.89),
    ("MRVL", "Marvell", "Semiconductors", 58.92),
    ("MPWR", "Monolithic Power", "Semiconductors", 487.34),
    ("ENPH", "Enphase Energy", "Clean Energy", 87.56),
    ("SEDG", "SolarEdge", "Clean Energy", 34.28),
    ("FSLR", "First Solar", "Clean Energy", 178.91),
    ("RUN", "Sunrun", "Clean Energy", 13.67),
    ("PLUG", "Plug Power", "Hydrogen", 4.89),
    ("BLDP", "Ballard Power", "Hydrogen", 3.45),
    ("BE", "Bloom Energy", "Clean Energy", 11.23),
    ("NEE", "NextEra Energy", "Utilities", 73.45),
    ("COIN", "Coinbase", "Fintech", 189.34),
]


class InstrumentCatalog:
    """Ordered, immutable set of instruments keyed by ticker."""

    def __init__(self, instruments: Iterable[Instrument]):
        self._instruments: Tuple[Instrument, ...] = tuple(instruments)
        self._by_ticker: Dict[str, Instrument] = {}
        self._index: Dict[str, int] = {}
        for i, inst in enumerate(self._instruments):
            if inst.ticker in self._by_ticker:
                raise ValueError(f"duplicate ticker {inst.ticker}")
            if not inst.initial_price > 0:
                raise ValueError(f"initial price for {inst.ticker} must be positive")
            self._by_ticker[inst.ticker] = inst
            self._index[inst.ticker] = i

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[str, str, str, float]]) -> "InstrumentCatalog":
        return cls(
            Instrument(ticker=t, name=n, sector=s, initial_price=p, exchange=exchange_for_ticker(t))
            for t, n, s, p in rows
        )

    @classmethod
    def default(cls, include_simulation_assets: bool = True) -> "InstrumentCatalog":
        rows = list(LIVE_ASSETS)
        if include_simulation_assets:
            rows += SIMULATION_ONLY_ASSETS
        return cls.from_rows(rows)

    def __iter__(self) -> Iterator[Instrument]:
        return iter(self._instruments)

    def __len__(self) -> int:
        return len(self._instruments)

    def __contains__(self, ticker: object) -> bool:
        return ticker in self._by_ticker

    def get(self, ticker: str) -> Optional[Instrument]:
        return self._by_ticker.get(ticker)

    def __getitem__(self, ticker: str) -> Instrument:
        return self._by_ticker[ticker]

    def index_of(self, ticker: str) -> int:
        return self._index[ticker]

    @property
    def tickers(self) -> List[str]:
        return [i.ticker for i in self._instruments]

    def active_exchanges(self, tickers: Optional[Sequence[str]] = None) -> List[str]:
        """Unique exchanges for the given tickers (all by default), in first-seen order."""
        seen: Dict[str, None] = {}
        for ticker in tickers if tickers is not None else self.tickers:
            inst = self._by_ticker.get(ticker)
            seen[inst.exchange if inst else exchange_for_ticker(ticker)] = None
        return list(seen)


def default_live_tickers() -> List[str]:
    return [row[0] for row in LIVE_ASSETS]
