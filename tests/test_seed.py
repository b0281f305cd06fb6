from pathlib import Path
from autohunt.models import Fingerprint, Hunt, Listing
from autohunt.scripts.seed import seed

DATA = Path(__file__).resolve().parent.parent / "data"

def test_seed_loads_sample_data(db):
    counts = seed(db, str(DATA / "seed_fingerprints.csv"), str(DATA / "seed_listings.json"))
    assert counts == {"fingerprints": 5, "listings": 4, "hunts": 4}
    hilux = db.query(Fingerprint).filter(Fingerprint.model == "HiLux").one()
    assert hilux.sell_price == 45000 and hilux.platform_class is None
    passed_in = db.query(Listing).filter(Listing.external_id == "GR-7781").one()
    assert passed_in.pass_count == 1
    assert passed_in.km is None
    assert db.query(Hunt).count() == 4

def test_seed_skips_missing_files(db, tmp_path):
    counts = seed(db, str(tmp_path / "none.csv"), str(tmp_path / "none.json"))
    assert counts == {"fingerprints": 0, "listings": 0, "hunts": 0}
