"""CSV export utilities for election results."""

import csv
import io
from typing import Any, Dict


def results_to_csv(results: Dict[str, Any]) -> str:
    """
    Convert an election results document to CSV format.

    One row per candidate, then the null and blank totals, then the turnout
    figures.

    Args:
        results: Output of ``summarize_results``

    Returns:
        CSV string
    """
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow(["election", results["election"]["title"]])
    writer.writerow(["status", results["election"]["status"]])
    writer.writerow([])

    writer.writerow(["number", "name", "party", "votes", "percentage"])
    for candidate in results["candidates"]:
        writer.writerow(
            [
                candidate["number"],
                candidate["name"],
                candidate["party"],
                candidate["votes"],
                f"{candidate['percentage']:.2f}",
            ]
        )
    writer.writerow(
        ["", "Null votes", "", results["null_votes"]["votes"], f"{results['null_votes']['percentage']:.2f}"]
    )
    writer.writerow(
        ["", "Blank votes", "", results["blank_votes"]["votes"], f"{results['blank_votes']['percentage']:.2f}"]
    )
    writer.writerow([])

    turnout = results["turnout"]
    writer.writerow(["eligible", turnout["eligible"]])
    writer.writerow(["voted", turnout["voted"]])
    writer.writerow(["abstentions", turnout["abstentions"]])
    writer.writerow(["participation", f"{turnout['participation']:.2f}"])

    return output.getvalue()
