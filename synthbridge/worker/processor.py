"""
Toolkit adapter executed inside the worker interpreter.

DataProcessor wraps pandas loading and the SDV synthesizers/evaluators behind
the small call surface the worker programs use. Every public method returns a
plain dict; failures that belong to the user's data are returned as
``{"success": False, "error": ...}`` rather than raised.
"""

from __future__ import annotations

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from .runtime import json_safe

logger = logging.getLogger(__name__)

SNIFF_BYTES = 64 * 1024
CANDIDATE_DELIMITERS = ",;\t|"
SAMPLE_ROWS = 5
HISTOGRAM_BINS = 20
MAX_CATEGORIES = 20

ProgressFn = Callable[[int, str], None]


def _no_progress(percent: int, message: str = "") -> None:
    pass


def sniff_delimiter(path: str) -> str:
    """Guess the field delimiter from the head of a text file; ',' when unsure."""
    with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
        head = f.read(SNIFF_BYTES)
    try:
        return csv.Sniffer().sniff(head, delimiters=CANDIDATE_DELIMITERS).delimiter
    except csv.Error:
        return ","


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    return json_safe(df.astype(object).where(pd.notna(df), None).to_dict(orient="records"))


class DataProcessor:
    """Holds the tables loaded for one worker invocation."""

    def __init__(self):
        self.tables: Dict[str, pd.DataFrame] = {}
        self.delimiters: Dict[str, str] = {}
        self.metadata = None
        self.relationships: List[Dict[str, str]] = []

    # ----- loading -----

    def load_csv(self, path: str, table_name: str) -> Dict[str, Any]:
        if not Path(path).is_file():
            return {"success": False, "error": f"File not found: {path}"}
        delimiter = sniff_delimiter(path)
        try:
            df = pd.read_csv(path, sep=delimiter)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            return {"success": False, "error": f"Could not parse {Path(path).name}: {e}"}
        self.tables[table_name] = df
        self.delimiters[table_name] = delimiter
        return {
            "success": True,
            "table_name": table_name,
            "rows": int(len(df)),
            "columns": [str(c) for c in df.columns],
            "delimiter": delimiter,
        }

    # ----- analysis -----

    def analyze_data(self) -> Dict[str, Any]:
        """Per-table summaries plus an ``_metadata`` entry with detected structure."""
        analysis: Dict[str, Any] = {}
        column_types: Dict[str, List[str]] = {}
        for name, df in self.tables.items():
            analysis[name] = {
                "shape": [int(df.shape[0]), int(df.shape[1])],
                "rows": int(len(df)),
                "columns": [str(c) for c in df.columns],
                "dtypes": {str(c): str(t) for c, t in df.dtypes.items()},
                "null_counts": {str(c): int(v) for c, v in df.isna().sum().items()},
                "unique_counts": {str(c): int(v) for c, v in df.nunique().items()},
                "sample_data": _records(df.head(SAMPLE_ROWS)),
                "delimiter": self.delimiters.get(name, ","),
            }

        metadata_summary: Dict[str, Any] = {
            "total_rows": int(sum(len(df) for df in self.tables.values())),
            "total_columns": int(sum(df.shape[1] for df in self.tables.values())),
        }
        try:
            metadata = self._detect_metadata()
            for table_name, table_meta in metadata.to_dict().get("tables", {}).items():
                for column, column_meta in table_meta.get("columns", {}).items():
                    column_types.setdefault(column_meta.get("sdtype", "unknown"), []).append(f"{table_name}.{column}")
            metadata_summary["metadata_validation"] = "valid"
        except Exception as e:
            logger.warning(f"metadata detection failed: {e}")
            metadata = None
            metadata_summary["metadata_validation"] = f"detection failed: {e}"
        metadata_summary["column_types"] = column_types

        analysis["_metadata"] = {
            "metadata_summary": metadata_summary,
            "suggested_relationships": self.suggest_relationships(metadata),
        }
        return json_safe(analysis)

    def suggest_relationships(self, metadata: Any = None) -> List[Dict[str, Any]]:
        """
        Candidate parent/child links.

        Links detected by the toolkit come first ("high"); a name-based pass then
        proposes a link wherever a column is unique in one table and its values
        in another table are a subset ("medium").
        """
        suggestions: List[Dict[str, Any]] = []
        seen = set()
        if metadata is not None:
            for rel in metadata.to_dict().get("relationships", []):
                key = (rel["parent_table_name"], rel["parent_primary_key"],
                       rel["child_table_name"], rel["child_foreign_key"])
                seen.add(key)
                suggestions.append(self._suggestion(*key, confidence="high"))

        for parent, pdf in self.tables.items():
            for column in pdf.columns:
                parent_values = pdf[column].dropna()
                if parent_values.empty or not parent_values.is_unique:
                    continue
                for child, cdf in self.tables.items():
                    if child == parent or column not in cdf.columns:
                        continue
                    key = (parent, str(column), child, str(column))
                    if key in seen:
                        continue
                    child_values = cdf[column].dropna()
                    if child_values.empty or not child_values.isin(parent_values).all():
                        continue
                    seen.add(key)
                    suggestions.append(self._suggestion(*key, confidence="medium"))
        return suggestions

    @staticmethod
    def _suggestion(parent_table, parent_key, child_table, child_key, confidence):
        return {
            "id": f"{parent_table}.{parent_key}->{child_table}.{child_key}",
            "parent_table": parent_table,
            "parent_key": parent_key,
            "child_table": child_table,
            "child_key": child_key,
            "confidence": confidence,
            "auto_suggested": True,
        }

    def _detect_metadata(self):
        from sdv.metadata import Metadata
        return Metadata.detect_from_dataframes(self.tables)

    # ----- metadata -----

    def setup_metadata(self, relationships: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Build toolkit metadata containing exactly the given relationships.

        Auto-detected links are discarded; the caller's confirmed list is
        authoritative.
        """
        if not self.tables:
            raise ValueError("No tables loaded")
        for rel in relationships:
            for table, column in ((rel["parent_table"], rel["parent_key"]),
                                  (rel["child_table"], rel["child_key"])):
                if table not in self.tables:
                    raise ValueError(f"Relationship references unknown table: {table}")
                if column not in self.tables[table].columns:
                    raise ValueError(f"Column '{column}' not found in table '{table}'")

        metadata = self._detect_metadata()
        metadata.relationships = []
        for rel in relationships:
            for table, column in ((rel["parent_table"], rel["parent_key"]),
                                  (rel["child_table"], rel["child_key"])):
                metadata.update_column(column_name=column, table_name=table, sdtype="id")
            if metadata.tables[rel["parent_table"]].primary_key != rel["parent_key"]:
                metadata.set_primary_key(column_name=rel["parent_key"], table_name=rel["parent_table"])
            metadata.add_relationship(
                parent_table_name=rel["parent_table"],
                child_table_name=rel["child_table"],
                parent_primary_key=rel["parent_key"],
                child_foreign_key=rel["child_key"],
            )
        self.metadata = metadata
        self.relationships = list(relationships)
        return {"success": True, "tables": list(self.tables), "relationships": len(relationships)}

    # ----- synthesis -----

    def generate_synthetic_data(
        self,
        num_rows: Optional[int] = None,
        algorithm: str = "GaussianCopula",
        progress: Optional[ProgressFn] = None,
    ) -> Dict[str, Any]:
        """
        Fit and sample. Linked tables use the hierarchical multi-table
        synthesizer; otherwise each table gets its own single-table model.
        """
        progress = progress or _no_progress
        if self.metadata is None:
            self.setup_metadata([])

        if self.relationships:
            progress(25, "Training multi-table model...")
            synthetic = self._sample_multi_table(num_rows)
        else:
            synthetic = {}
            count = len(self.tables)
            for i, (name, df) in enumerate(self.tables.items()):
                progress(25 + int(60 * i / count), f"Training {algorithm} model for {name}...")
                synthetic[name] = self._sample_single_table(name, df, num_rows, algorithm)

        progress(90, "Formatting synthetic data...")
        data = {name: _records(df) for name, df in synthetic.items()}
        progress(100, "Synthetic data generation complete")
        return {
            "success": True,
            "data": data,
            "generation_info": {
                "algorithm": "HMA" if self.relationships else algorithm,
                "tables_generated": len(data),
                "rows_generated": {name: len(rows) for name, rows in data.items()},
                "relationships_preserved": len(self.relationships),
                "original_files": list(self.tables),
                "delimiters": dict(self.delimiters),
                "timestamp": datetime.now().isoformat(),
            },
        }

    def _sample_single_table(self, name: str, df: pd.DataFrame, num_rows: Optional[int],
                             algorithm: str) -> pd.DataFrame:
        from sdv.single_table import CTGANSynthesizer, GaussianCopulaSynthesizer, TVAESynthesizer

        classes = {
            "GaussianCopula": GaussianCopulaSynthesizer,
            "CTGAN": CTGANSynthesizer,
            "TVAE": TVAESynthesizer,
        }
        if algorithm not in classes:
            raise ValueError(f"Unknown algorithm: {algorithm}")
        synthesizer = classes[algorithm](self.metadata.get_table_metadata(name))
        synthesizer.fit(df)
        return synthesizer.sample(num_rows=int(num_rows or len(df)))

    def _sample_multi_table(self, num_rows: Optional[int]) -> Dict[str, pd.DataFrame]:
        from sdv.multi_table import HMASynthesizer

        synthesizer = HMASynthesizer(self.metadata)
        synthesizer.fit(self.tables)
        scale = 1.0
        if num_rows:
            children = {r["child_table"] for r in self.relationships}
            roots = [t for t in self.tables if t not in children] or list(self.tables)
            base = max(len(self.tables[roots[0]]), 1)
            scale = num_rows / base
        return synthesizer.sample(scale=scale)

    # ----- evaluation -----

    def _synthetic_frames(self, synthetic_data: Dict[str, List[Dict[str, Any]]]) -> Dict[str, pd.DataFrame]:
        frames = {}
        for name, rows in synthetic_data.items():
            if name not in self.tables:
                raise ValueError(f"Synthetic table has no original: {name}")
            real = self.tables[name]
            df = pd.DataFrame.from_records(rows, columns=list(real.columns))
            for column in real.columns:
                if pd.api.types.is_numeric_dtype(real[column]):
                    df[column] = pd.to_numeric(df[column], errors="coerce")
            frames[name] = df
        return frames

    def evaluate_quality_with_data(self, synthetic_data: Dict[str, List[Dict[str, Any]]]) -> Dict[str, Any]:
        """Quality report and diagnostic for synthetic rows against the loaded originals."""
        if self.metadata is None:
            self.setup_metadata([])
        synthetic = self._synthetic_frames(synthetic_data)
        real = {name: self.tables[name] for name in synthetic}

        if self.relationships and len(real) > 1:
            from sdv.evaluation.multi_table import evaluate_quality, run_diagnostic

            quality = evaluate_quality(real, synthetic, self.metadata, verbose=False)
            diagnostic = run_diagnostic(real, synthetic, self.metadata, verbose=False)
            result = self._report_payload(quality, diagnostic)
        else:
            from sdv.evaluation.single_table import evaluate_quality, run_diagnostic

            per_table = {}
            for name in synthetic:
                table_meta = self.metadata.get_table_metadata(name)
                quality = evaluate_quality(real[name], synthetic[name], table_meta, verbose=False)
                diagnostic = run_diagnostic(real[name], synthetic[name], table_meta, verbose=False)
                per_table[name] = self._report_payload(quality, diagnostic, table=name)
            result = self._merge_reports(per_table)

        result["success"] = True
        result["tables_evaluated"] = list(synthetic)
        return json_safe(result)

    @staticmethod
    def _details(report, prop: str, table: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            df = report.get_details(property_name=prop)
        except Exception as e:
            logger.debug(f"no details for {prop}: {e}")
            return []
        if table is not None and "Table" not in df.columns:
            df = df.assign(Table=table)
        return _records(df)

    @staticmethod
    def _property_scores(report) -> Dict[str, Any]:
        props = report.get_properties()
        return {str(row["Property"]): row["Score"] for _, row in props.iterrows()}

    def _report_payload(self, quality, diagnostic, table: Optional[str] = None) -> Dict[str, Any]:
        scores = self._property_scores(quality)
        diag_scores = self._property_scores(diagnostic)
        return {
            "quality_score": quality.get_score(),
            "column_shapes": scores.get("Column Shapes"),
            "column_pair_trends": scores.get("Column Pair Trends"),
            "column_shapes_details": self._details(quality, "Column Shapes", table),
            "column_pair_trends_details": self._details(quality, "Column Pair Trends", table),
            "cardinality_details": self._details(quality, "Cardinality", table) if table is None else [],
            "intertable_trends_details": self._details(quality, "Intertable Trends", table) if table is None else [],
            "diagnostic_results": {
                "overall_score": diagnostic.get_score(),
                "properties": diag_scores,
                "data_validity_details": self._details(diagnostic, "Data Validity", table),
                "data_structure_details": self._details(diagnostic, "Data Structure", table),
                "relationship_validity_details": (
                    self._details(diagnostic, "Relationship Validity", table) if table is None else []
                ),
            },
        }

    @staticmethod
    def _merge_reports(per_table: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        def mean(values):
            values = [v for v in values if v is not None and not pd.isna(v)]
            return float(np.mean(values)) if values else None

        reports = list(per_table.values())
        merged: Dict[str, Any] = {
            "quality_score": mean(r["quality_score"] for r in reports),
            "column_shapes": mean(r["column_shapes"] for r in reports),
            "column_pair_trends": mean(r["column_pair_trends"] for r in reports),
            "diagnostic_results": {
                "overall_score": mean(r["diagnostic_results"]["overall_score"] for r in reports),
            },
            "per_table": {name: r["quality_score"] for name, r in per_table.items()},
        }
        for key in ("column_shapes_details", "column_pair_trends_details",
                    "cardinality_details", "intertable_trends_details"):
            merged[key] = [row for r in reports for row in r[key]]
        for key in ("data_validity_details", "data_structure_details", "relationship_validity_details"):
            merged["diagnostic_results"][key] = [row for r in reports for row in r["diagnostic_results"][key]]
        return merged

    # ----- plots -----

    def column_plot_data(
        self,
        synthetic_data: Dict[str, List[Dict[str, Any]]],
        column_name: str,
        table_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Real vs synthetic distribution of one column, as histogram or category frequencies."""
        synthetic = self._synthetic_frames(synthetic_data)
        candidates = [table_name] if table_name else list(synthetic)
        table = next(
            (t for t in candidates if t in synthetic and column_name in self.tables[t].columns), None
        )
        if table is None:
            return {"success": False, "error": f"Column '{column_name}' not found"}

        real = self.tables[table][column_name].dropna()
        synth = synthetic[table][column_name].dropna()
        if pd.api.types.is_numeric_dtype(self.tables[table][column_name]):
            column_type = "numerical"
            real_series, synth_series = self._histograms(real.astype(float), synth.astype(float))
        else:
            column_type = "categorical"
            real_series, synth_series = self._category_frequencies(real.astype(str), synth.astype(str))
        real_series["label"] = "Real Data"
        synth_series["label"] = "Synthetic Data"
        return json_safe({
            "success": True,
            "table_name": table,
            "column_name": column_name,
            "column_type": column_type,
            "real_data": real_series,
            "synthetic_data": synth_series,
        })

    @staticmethod
    def _histograms(real: pd.Series, synth: pd.Series):
        combined = np.concatenate([real.to_numpy(), synth.to_numpy()])
        if combined.size == 0:
            edges = np.linspace(0.0, 1.0, HISTOGRAM_BINS + 1)
        else:
            edges = np.histogram_bin_edges(combined, bins=HISTOGRAM_BINS)
        centers = (edges[:-1] + edges[1:]) / 2

        def series(values: pd.Series) -> Dict[str, Any]:
            counts, _ = np.histogram(values.to_numpy(), bins=edges)
            total = counts.sum()
            freqs = counts / total if total else counts.astype(float)
            return {"values": centers.tolist(), "frequencies": freqs.tolist()}

        return series(real), series(synth)

    @staticmethod
    def _category_frequencies(real: pd.Series, synth: pd.Series):
        real_freq = real.value_counts(normalize=True)
        synth_freq = synth.value_counts(normalize=True)
        categories = list(real_freq.index[:MAX_CATEGORIES])
        for extra in synth_freq.index:
            if len(categories) >= MAX_CATEGORIES:
                break
            if extra not in categories:
                categories.append(extra)

        def series(freq: pd.Series) -> Dict[str, Any]:
            return {
                "categories": categories,
                "frequencies": [float(freq.get(c, 0.0)) for c in categories],
            }

        return series(real_freq), series(synth_freq)

    # ----- reports -----

    def save_report(self, report: Dict[str, Any], destination: str) -> Dict[str, Any]:
        path = Path(destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(json_safe(report), f, indent=2, ensure_ascii=False)
        return {"success": True, "path": str(path), "bytes": path.stat().st_size}
