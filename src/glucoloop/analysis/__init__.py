from .export import counteraction_to_dataframe, output_summary, prediction_to_dataframe, write_json

__all__ = [
    "counteraction_to_dataframe",
    "output_summary",
    "prediction_to_dataframe",
    "write_json",
]
