"""Category tables consumed by the keyword classifier.

Every classifier in the project reads from `KEYWORD_TABLES`; adding a category
means adding one entry here, nothing else.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class SettingCategory(StrEnum):
    fantasy_medieval = "fantasy_medieval"
    fantasy_modern = "fantasy_modern"
    sci_fi_space = "sci_fi_space"
    sci_fi_cyberpunk = "sci_fi_cyberpunk"
    post_apocalyptic = "post_apocalyptic"
    horror_gothic = "horror_gothic"
    horror_modern = "horror_modern"
    historical = "historical"
    superhero = "superhero"
    steampunk = "steampunk"
    weird_west = "weird_west"
    mystery_noir = "mystery_noir"
    generic = "generic"


class Intent(StrEnum):
    action = "Action"
    question = "Question"


@dataclass(frozen=True, slots=True)
class CategoryTable:
    """Closed category set plus the keywords that vote for each category.

    Keywords are matched against the lower-cased input padded with one space
    on each side, so `" is "` only matches the whole word.
    """

    name: str
    keywords: dict[str, tuple[str, ...]]
    default: str

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(self.keywords.keys())


SETTING_DESCRIPTIONS: dict[SettingCategory, str] = {
    SettingCategory.fantasy_medieval: "Classic fantasy with medieval technology, magic, kingdoms, and traditional fantasy races",
    SettingCategory.fantasy_modern: "Magic exists in the modern world, often hidden from mundane society",
    SettingCategory.sci_fi_space: "Space exploration, alien worlds, starships and interstellar politics",
    SettingCategory.sci_fi_cyberpunk: "High tech, low life: megacorporations, hackers, implants and neon-lit streets",
    SettingCategory.post_apocalyptic: "Survival after the collapse of civilization amid ruins, scarcity and mutation",
    SettingCategory.horror_gothic: "Gothic horror with vampires, curses, haunted estates and creeping dread",
    SettingCategory.horror_modern: "Contemporary horror: cults, conspiracies and monsters in the modern world",
    SettingCategory.historical: "A real historical period played realistically, without supernatural elements",
    SettingCategory.superhero: "Powered heroes and villains, secret identities and collateral damage",
    SettingCategory.steampunk: "Victorian-era technology with steam power, clockwork, and fantastical mechanical innovations",
    SettingCategory.weird_west: "American frontier with supernatural and weird science elements",
    SettingCategory.mystery_noir: "Crime investigation with atmosphere of moral ambiguity and urban decay",
    SettingCategory.generic: "Fallback for settings that don't fit other categories",
}


SETTING_TABLE = CategoryTable(
    name="setting",
    default=SettingCategory.generic.value,
    keywords={
        SettingCategory.fantasy_medieval.value: (
            "kingdom", "dragon", "magic", "wizard", "knight", "castle", "dwarf", "elf",
            "medieval", "sword", "sorcery", "dungeon", "quest", "tavern", "guild",
            "nobles", "peasants", "fortress", "citadel", "ancient", "runes",
        ),
        SettingCategory.fantasy_modern.value: (
            "modern", "urban fantasy", "cell phone", "internet", "masquerade",
            "hidden world", "secret society", "contemporary", "city", "technology",
        ),
        SettingCategory.sci_fi_space.value: (
            "space", "galaxy", "starship", "alien", "planet", "hyperspace", "robot",
            "android", "laser", "colony", "federation", "empire", "asteroid", "nebula",
        ),
        SettingCategory.sci_fi_cyberpunk.value: (
            "cyberpunk", "corporation", "hacker", "virtual reality", "cyborg",
            "implant", "matrix", "net", "megacorp", "dystopian", "neon", "chrome",
        ),
        SettingCategory.post_apocalyptic.value: (
            "wasteland", "apocalypse", "survivor", "radiation", "mutant", "ruins",
            "scavenge", "bunker", "fallout", "collapse", "raider", "settlement",
        ),
        SettingCategory.horror_gothic.value: (
            "vampire", "werewolf", "gothic", "mansion", "curse", "séance", "occult",
            "victorian", "cemetery", "ghost", "supernatural", "dark", "haunted",
        ),
        SettingCategory.horror_modern.value: (
            "horror", "monster", "internet", "social media", "conspiracy", "cult",
            "investigation", "modern", "contemporary", "urban", "creepypasta",
        ),
        SettingCategory.historical.value: (
            "historical", "renaissance", "industrial", "revolution", "war", "empire",
            "colonial", "period", "authentic", "realistic", "no magic", "no supernatural",
        ),
        SettingCategory.superhero.value: (
            "superhero", "powers", "cape", "villain", "secret identity", "mutation",
            "comic", "justice", "league", "team", "super", "hero",
        ),
        SettingCategory.steampunk.value: (
            "steampunk", "victorian", "steam", "clockwork", "gear", "airship",
            "mechanical", "invention", "brass", "copper", "automation",
        ),
        SettingCategory.weird_west.value: (
            "western", "frontier", "cowboy", "railroad", "native", "spirit", "gunslinger",
            "saloon", "sheriff", "outlaw", "desert", "plains", "weird west",
        ),
        SettingCategory.mystery_noir.value: (
            "detective", "noir", "crime", "investigation", "murder", "police",
            "corruption", "gangster", "city", "urban", "mystery", "case",
        ),
        SettingCategory.generic.value: (),
    },
)


# Action is listed first: on equal hits the earlier category wins.
INTENT_TABLE = CategoryTable(
    name="intent",
    default=Intent.action.value,
    keywords={
        Intent.action.value: (
            " i ", " my character ", " we ", " let me ", " going to ", " want to ",
            " try to ", " attempt ", " i'll ", " we'll ",
        ),
        Intent.question.value: (
            "?", " what ", " where ", " when ", " who ", " why ", " how ",
            " is ", " are ", " can ", " could ", " would ", " should ",
        ),
    },
)


KEYWORD_TABLES: dict[str, CategoryTable] = {
    SETTING_TABLE.name: SETTING_TABLE,
    INTENT_TABLE.name: INTENT_TABLE,
}


def category_descriptions() -> str:
    return "\n".join(f"- **{k.value}**: {v}" for k, v in SETTING_DESCRIPTIONS.items())
