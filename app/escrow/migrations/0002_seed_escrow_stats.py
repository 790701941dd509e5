"""
Seed the single aggregate stats row.

Counters are only ever changed with F() increments, which need the row
to exist beforehand.
"""

from django.db import migrations


def seed_stats(apps, schema_editor):
    EscrowStats = apps.get_model("escrow", "EscrowStats")
    EscrowStats.objects.get_or_create(pk=1)


def remove_stats(apps, schema_editor):
    EscrowStats = apps.get_model("escrow", "EscrowStats")
    EscrowStats.objects.filter(pk=1).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(seed_stats, remove_stats),
    ]
