"""Builders for spreadsheet rows and exports used across the tests."""
import csv
import io

HEADER = [
    "Restaurant",
    "Address",
    "Tags",
    "Reviewer",
    "Bigger Belly Rating",
    "Location",
    "TikTok Video",
    "TikTok Thumbnail",
    "GeoCode Script",
    "Google Maps Link",
    "Date of Posted Video",
]


def make_csv(rows, header=HEADER):
    """Render row dicts as a CSV export the way Google Sheets publishes it."""
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=header, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: row.get(k, "") for k in header})
    return out.getvalue()


def venue_row(i, **overrides):
    row = {
        "Restaurant": f"Venue {i}",
        "Address": f"{100 + i} Main St, Austin, TX",
        "Tags": "Tacos, BBQ",
        "Reviewer": "Sam",
        "Bigger Belly Rating": "8.5",
        "Location": "Austin, TX",
        "TikTok Video": f"https://www.tiktok.com/@bb/video/{7000 + i}",
        "TikTok Thumbnail": f"https://cdn.example.com/thumbs/{7000 + i}.jpeg",
        "GeoCode Script": f"30.{i:02d}, -97.{i:02d}",
        "Google Maps Link": f"https://maps.google.com/?q=venue{i}",
        "Date of Posted Video": "2024-05-01",
    }
    row.update(overrides)
    return row
