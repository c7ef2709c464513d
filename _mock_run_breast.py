import tempfile
from pathlib import Path

import pandas as pd

from nhanes_breast_pipeline.config import CONFIG, SOURCE_FILES
from nhanes_breast_pipeline.main import main
from nhanes_breast_pipeline.synthetic import fake_read_sas_factory, make_raw_extracts

data_dir = Path(tempfile.mkdtemp(prefix="nhanes_mock_"))
tables = make_raw_extracts(n=4000, seed=42)

pd.read_sas = fake_read_sas_factory(tables, SOURCE_FILES, data_dir)

config = dict(CONFIG)
config["data_dir"] = str(data_dir)
config["output_dir"] = str(data_dir / "outputs")
config["print_tables"] = True

result = main(config)
print(f"Analytic rows: {len(result.merge.analytic_df)}")
print(f"Failed analyses: {len(result.analyses.failures)}")
print(f"Outputs: {result.output_dir}")
print("MOCK_RUN_SUCCESS")
