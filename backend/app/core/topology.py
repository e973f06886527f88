"""Static Lisbon Metro topology: lines, canonical station order, destinations."""

from dataclasses import dataclass
from typing import Literal

LineName = Literal["verde", "azul", "amarela", "vermelha"]

LINE_NAMES: tuple[LineName, ...] = ("verde", "azul", "amarela", "vermelha")

# Canonical order along each line, first and last entries are the terminals
LINE_ORDER: dict[str, tuple[str, ...]] = {
    # Telheiras -> Cais do Sodré
    "verde": (
        "TE", "CG", "AL", "RM", "AE", "AM", "AR", "AN", "IN", "MM", "RO", "BC", "CS",
    ),
    # Reboleira -> Santa Apolónia
    "azul": (
        "RB", "AS", "AF", "PO", "CA", "CM", "AH", "LA", "JZ", "PE", "SS", "PA",
        "MP", "AV", "RE", "BC", "TP", "SP",
    ),
    # Odivelas -> Rato
    "amarela": (
        "OD", "SR", "AX", "LU", "QC", "CG", "CU", "EC", "CP", "SA", "PI", "MP", "RA",
    ),
    # Aeroporto -> São Sebastião
    "vermelha": (
        "AP", "EN", "MO", "OR", "CR", "OS", "CH", "BV", "OL", "AM", "SA", "SS",
    ),
}

STATION_NAMES: dict[str, str] = {
    "RB": "Reboleira",
    "AS": "Amadora Este",
    "AF": "Alfornelos",
    "PO": "Pontinha",
    "CA": "Carnide",
    "CM": "Colégio Militar/Luz",
    "AH": "Alto dos Moinhos",
    "LA": "Laranjeiras",
    "JZ": "Jardim Zoológico",
    "PE": "Praça de Espanha",
    "SS": "São Sebastião",
    "PA": "Parque",
    "MP": "Marquês de Pombal",
    "AV": "Avenida",
    "RE": "Restauradores",
    "BC": "Baixa/Chiado",
    "TP": "Terreiro do Paço",
    "SP": "Santa Apolónia",
    "TE": "Telheiras",
    "CG": "Campo Grande",
    "AL": "Alvalade",
    "RM": "Roma",
    "AE": "Areeiro",
    "AM": "Alameda",
    "AR": "Arroios",
    "AN": "Anjos",
    "IN": "Intendente",
    "MM": "Martim Moniz",
    "RO": "Rossio",
    "CS": "Cais do Sodré",
    "OD": "Odivelas",
    "SR": "Senhor Roubado",
    "AX": "Ameixoeira",
    "LU": "Lumiar",
    "QC": "Quinta das Conchas",
    "CU": "Cidade Universitária",
    "EC": "Entre Campos",
    "CP": "Campo Pequeno",
    "SA": "Saldanha",
    "PI": "Picoas",
    "RA": "Rato",
    "AP": "Aeroporto",
    "EN": "Encarnação",
    "MO": "Moscavide",
    "OR": "Oriente",
    "CR": "Cabo Ruivo",
    "OS": "Olivais",
    "CH": "Chelas",
    "BV": "Bela Vista",
    "OL": "Olaias",
}


@dataclass(frozen=True)
class Destination:
    code: str
    name: str
    line: str
    terminal: str


DESTINATIONS: dict[str, Destination] = {
    d.code: d
    for d in (
        Destination("50", "Telheiras", "verde", "TE"),
        Destination("54", "Cais do Sodré", "verde", "CS"),
        Destination("33", "Reboleira", "azul", "RB"),
        Destination("42", "Santa Apolónia", "azul", "SP"),
        Destination("43", "Odivelas", "amarela", "OD"),
        Destination("48", "Rato", "amarela", "RA"),
        Destination("60", "Aeroporto", "vermelha", "AP"),
        Destination("38", "São Sebastião", "vermelha", "SS"),
    )
}

# Last character of the train id identifies the line it runs on
TRAIN_SUFFIX_TO_LINE: dict[str, str] = {
    "A": "azul",
    "B": "amarela",
    "C": "verde",
    "D": "vermelha",
}

DEFAULT_LINE = "verde"


def line_for_train(train_id: str | None) -> str | None:
    """Line encoded in the train id suffix, e.g. '123C' -> 'verde'."""
    if not train_id:
        return None
    train_id = train_id.strip()
    if not train_id:
        return None
    return TRAIN_SUFFIX_TO_LINE.get(train_id[-1].upper())


def destination(code: str | None) -> Destination | None:
    if not code:
        return None
    return DESTINATIONS.get(code.strip())


def station_index(line: str, station_id: str) -> int | None:
    """Position of a station in the line's canonical order, or None if not on it."""
    try:
        return LINE_ORDER[line].index(station_id)
    except (KeyError, ValueError):
        return None
