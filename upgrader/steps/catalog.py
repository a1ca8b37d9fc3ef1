"""Built-in upgrade steps for the 6.2.x series.

Each version in the series is handled by a ``<version>.sql`` script in
``upgrader/sql/``, by a step function below, or by both.  A script with
no function runs on its own; a function replaces the script and must
include ``run_sql(version)`` if the script should still run.
"""

from __future__ import annotations

from upgrader.core.config import get_settings
from upgrader.steps.actions import repair_unique_index, set_file_upload_date
from upgrader.steps.registry import StepRegistry, registry
from upgrader.steps.tasks import Task, alter_column, custom_action, run_sql


def custom_group_extends_options() -> list[str]:
    """Entity types a custom field group can extend."""
    return [
        "Activity", "Address", "Case", "Contact", "Individual", "Household",
        "Organization", "Contribution", "ContributionRecur", "Event",
        "Grant", "Group", "Membership", "Participant", "Pledge", "Relationship",
    ]


def custom_group_style_options() -> list[str]:
    """Visual relationships between a custom group and its parent form."""
    return ["Tab", "Inline", "Tab with table"]


def upgrade_6_2_alpha1(version: str) -> list[Task]:
    return [
        run_sql(version),
        alter_column(
            'Add column "civicrm_managed.checksum"',
            "civicrm_managed", "checksum",
            title="Checksum",
            sql_type="varchar(45)",
            input_type="Text",
            required=False,
            description="Configuration of the managed-entity when last stored",
        ),
        custom_action("Set upload_date in file table", set_file_upload_date),
        alter_column(
            "Set default for upload_date in file table",
            "civicrm_file", "upload_date",
            title="File Upload Date",
            sql_type="datetime",
            input_type="Select Date",
            required=True,
            readonly=True,
            default="CURRENT_TIMESTAMP",
            description="Date and time that this attachment was uploaded or written to server.",
        ),
        alter_column(
            'CustomGroup: Make "name" required',
            "civicrm_custom_group", "name",
            title="Custom Group Name",
            sql_type="varchar(64)",
            input_type="Text",
            required=True,
            description="Variable name/programmatic handle for this group.",
            added_in="1.1",
        ),
        alter_column(
            'CustomGroup: Make "extends" required',
            "civicrm_custom_group", "extends",
            title="Custom Group Extends",
            sql_type="varchar(255)",
            input_type="Select",
            required=True,
            default="Contact",
            options=custom_group_extends_options,
            description="Type of object this group extends (can add other options later e.g. contact_address, etc.).",
            added_in="1.1",
        ),
        alter_column(
            'CustomGroup: Make "style" required',
            "civicrm_custom_group", "style",
            title="Custom Group Style",
            sql_type="varchar(15)",
            input_type="Select",
            required=True,
            default="Inline",
            options=custom_group_style_options,
            description="Visual relationship between this form and its parent.",
            added_in="1.1",
        ),
        alter_column(
            "Add in domain_id column to the civicrm_acl_contact_cache_table",
            "civicrm_acl_contact_cache", "domain_id",
            title="Domain",
            sql_type="int unsigned",
            input_type="Number",
            required=True,
            default=1,
            description="Implicit FK to civicrm_domain",
        ),
        custom_action(
            "Fix Unique index on acl cache table with domain id",
            repair_unique_index,
            "civicrm_acl_contact_cache",
            "UI_user_contact_operation",
            ["domain_id", "user_id", "contact_id", "operation"],
            foreign_key="FK_civicrm_acl_contact_cache_user_id",
        ),
    ]


def register_builtin_steps(target: StepRegistry, script_dir: str | None = None) -> StepRegistry:
    """Register the built-in functions, then any scripts in *script_dir*."""
    target.register_step(
        "6.2.alpha1",
        upgrade_6_2_alpha1,
        post_upgrade_message=(
            "File upload dates were backfilled from file creation times; "
            "files missing from the upload directory were stamped with the upgrade time."
        ),
    )
    target.discover_scripts(script_dir or get_settings().sql_script_dir)
    return target


_loaded = False


def load_default_registry() -> StepRegistry:
    """Populate the module-level registry once and return it."""
    global _loaded
    if not _loaded:
        register_builtin_steps(registry)
        _loaded = True
    return registry
