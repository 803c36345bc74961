"""Click CLI for letterstyle."""

import datetime
import json
import logging
import sys

import click

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _service():
    from letterstyle.database import SessionLocal, init_db
    from letterstyle.style.profiles import ProfileService
    init_db()
    return ProfileService(SessionLocal)


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
def cli():
    """letterstyle: per-clinician, per-subspecialty letter style learning."""


@cli.command()
def init_db():
    """Create the SQLite schema and seed threshold settings from .env."""
    from letterstyle.database import init_db
    init_db()
    click.echo("Database initialized successfully.")


@cli.command()
@click.option("--clinician", required=True, help="Clinician ID")
@click.option("--subspecialty", required=True, help="Subspecialty code")
@click.option("--letter", "letter_id", required=True, help="Letter ID")
@click.option("--draft", type=click.File("r", encoding="utf-8"), required=True, help="AI draft text file")
@click.option("--final", type=click.File("r", encoding="utf-8"), required=True, help="Approved letter text file")
def record_edit(clinician, subspecialty, letter_id, draft, final):
    """Diff an approved letter against its draft and record the edits."""
    from letterstyle.style.pipeline import StyleLearner

    learner = StyleLearner(_service())
    count, diff = learner.record_edits(clinician, letter_id, subspecialty, draft.read(), final.read())
    click.echo(f"Recorded {count} edit(s) for letter {letter_id}")
    for d in diff.changed_sections():
        click.echo(f"  {d.section_type:22s} {d.status:9s} {d.total_char_delta:+5d} chars  {d.total_word_delta:+4d} words")
    s = diff.stats
    click.echo(
        f"  +{s.total_word_added}/-{s.total_word_removed} words, "
        f"order changed: {'yes' if s.section_order_changed else 'no'}"
    )
    decision = learner.check_analysis(clinician, subspecialty)
    click.echo(f"Analysis due: {'yes' if decision.should_analyze else 'no'} ({decision.reason})")


@cli.command()
@click.option("--clinician", required=True, help="Clinician ID")
@click.option("--subspecialty", required=True, help="Subspecialty code")
def should_analyze(clinician, subspecialty):
    """Report whether enough new edits have accumulated for an analysis."""
    from letterstyle.style.pipeline import StyleLearner

    service = _service()
    decision = StyleLearner(service).check_analysis(clinician, subspecialty)
    _echo_json({**decision.to_dict(), **service.get_edit_statistics(clinician, subspecialty)})


@cli.command()
@click.option("--clinician", required=True, help="Clinician ID")
@click.option("--subspecialty", required=True, help="Subspecialty code")
@click.option("--edits", type=int, default=None, help="Edits the response covers (default: unanalyzed count)")
@click.option("--model", default="imported", help="Model identifier to record")
@click.argument("response", type=click.File("r", encoding="utf-8"))
def import_analysis(clinician, subspecialty, edits, model, response):
    """Merge a saved analyzer response into the clinician's profile."""
    from letterstyle.style.errors import StyleLearningError
    from letterstyle.style.pipeline import StyleLearner

    learner = StyleLearner(_service())
    try:
        profile = learner.import_analysis(clinician, subspecialty, response.read(), edits, model)
    except StyleLearningError as e:
        click.echo(f"Import failed: {e}", err=True)
        sys.exit(1)
    click.echo(
        f"Profile {clinician}/{subspecialty} updated: {profile.total_edits_analyzed} edits analyzed, "
        f"confidence {profile.overall_confidence():.2f}"
    )


@cli.command()
@click.option("--clinician", required=True, help="Clinician ID")
@click.option("--subspecialty", default=None, help="Subspecialty code (default: list all)")
def show_profile(clinician, subspecialty):
    """Print learned profiles as JSON."""
    service = _service()
    if subspecialty:
        profile = service.get_profile(clinician, subspecialty)
        if profile is None:
            click.echo(f"No profile for {clinician}/{subspecialty}", err=True)
            sys.exit(1)
        _echo_json(profile.to_dict())
        return
    profiles = service.list_profiles(clinician)
    if not profiles:
        click.echo(f"No profiles for {clinician}")
        return
    for p in profiles:
        click.echo(
            f"  {p.subspecialty:20s}  edits={p.total_edits_analyzed:<5d}  "
            f"strength={p.learning_strength:.2f}  confidence={p.overall_confidence():.2f}"
        )


@cli.command()
@click.option("--clinician", required=True, help="Clinician ID")
@click.option("--subspecialty", required=True, help="Subspecialty code")
@click.argument("strength", type=float)
def set_strength(clinician, subspecialty, strength):
    """Set the learning strength (0.0 = off, 1.0 = full)."""
    from letterstyle.style.errors import ProfileNotFoundError, ValidationError
    from letterstyle.style.merger import validate_strength

    try:
        strength = validate_strength(strength)
    except ValidationError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    service = _service()
    try:
        profile = service.adjust_learning_strength(clinician, subspecialty, strength)
    except ProfileNotFoundError:
        profile = service.create_profile(clinician, subspecialty, learning_strength=strength)
    click.echo(f"Learning strength for {clinician}/{subspecialty} is now {profile.learning_strength:.2f}")


@cli.command()
@click.option("--clinician", required=True, help="Clinician ID")
@click.option("--subspecialty", required=True, help="Subspecialty code")
@click.confirmation_option(prompt="Delete this learned profile?")
def reset_profile(clinician, subspecialty):
    """Delete a learned profile. Recorded edits are kept."""
    if _service().delete_profile(clinician, subspecialty):
        click.echo(f"Profile {clinician}/{subspecialty} deleted.")
    else:
        click.echo(f"No profile for {clinician}/{subspecialty}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--clinician", required=True, help="Clinician ID")
@click.option("--subspecialty", required=True, help="Subspecialty code")
@click.option("--letter-type", default=None, help="Letter type to mention in the guidance")
@click.option("--base-prompt", type=click.File("r", encoding="utf-8"), default=None, help="Prompt to insert guidance into")
@click.option("--metadata", is_flag=True, help="Also print conditioning metadata")
def condition(clinician, subspecialty, letter_type, base_prompt, metadata):
    """Print the generation prompt conditioned on the learned style."""
    from letterstyle.config_store import get_config_store

    result = _service().condition_prompt(
        clinician,
        subspecialty,
        base_prompt.read() if base_prompt else "",
        letter_type=letter_type,
        threshold=get_config_store().get_float("min_confidence_threshold"),
    )
    click.echo(result.prompt)
    if metadata:
        click.echo("")
        _echo_json(result.metadata)


@cli.command()
@click.option("--subspecialty", required=True, help="Subspecialty code")
@click.option("--start", type=click.DateTime(), required=True, help="Period start")
@click.option("--end", type=click.DateTime(), default=None, help="Period end (default: now)")
@click.option("--min-sample", type=int, default=None, help="Minimum edits required")
def aggregate(subspecialty, start, end, min_sample):
    """Build the de-identified analytics aggregate for one subspecialty."""
    from letterstyle.database import SessionLocal, init_db
    from letterstyle.style.aggregator import AnalyticsAggregator

    init_db()
    result = AnalyticsAggregator(SessionLocal).aggregate(
        subspecialty, start, end or datetime.datetime.utcnow(), min_sample,
    )
    if result is None:
        click.echo("Cohort below anonymity threshold; nothing stored.")
        return
    click.echo(f"Aggregate {result['period']} stored ({result['sample_size']} edits)")
    click.echo(f"  additions: {len(result['common_additions'])}  deletions: {len(result['common_deletions'])}")
    click.echo(f"  orders: {len(result['section_order_patterns'])}  phrasing: {len(result['phrasing_patterns'])}")


@cli.command()
def aggregate_weekly():
    """Aggregate the past week for every known subspecialty."""
    from letterstyle.database import SessionLocal, init_db
    from letterstyle.style.aggregator import AnalyticsAggregator

    init_db()
    result = AnalyticsAggregator(SessionLocal).run_weekly_aggregation()
    click.echo(f"Processed: {', '.join(result['processed']) or '-'}")
    click.echo(f"Skipped:   {', '.join(result['skipped']) or '-'}")


@cli.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
def thresholds(key, value):
    """Show learning thresholds, or override one: thresholds KEY VALUE."""
    from letterstyle.config_store import get_config_store
    from letterstyle.database import init_db

    init_db()
    store = get_config_store()
    if key and value is not None:
        try:
            store.set_global(key, value)
        except KeyError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
    for k, v in store.get_all_globals().items():
        click.echo(f"  {k:32s} {v}")


@cli.command()
def run_web():
    """Start the FastAPI JSON API."""
    import uvicorn
    from letterstyle.config import settings
    from letterstyle.database import init_db
    init_db()
    uvicorn.run(
        "letterstyle.web.app:app",
        host=settings.web_host,
        port=settings.web_port,
        reload=False,
    )


if __name__ == "__main__":
    cli()
