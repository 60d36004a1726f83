"""
Tests del motor de elegibilidad y ruteo.
"""

from pharma_alert.solicitudes.enrutamiento import calcular_destinatarios, es_elegible
from tests.conftest import ATENAS, HORARIO_CERRADO, T0, farmacia


class TestEsElegible:

    def test_abierta_verificada_y_con_dueno(self):
        assert es_elegible(farmacia("f1"), T0, ATENAS) is True

    def test_sin_dueno_no_es_elegible(self):
        assert es_elegible(farmacia("f1", tiene_dueno=False, de_guardia=True), T0, ATENAS) is False

    def test_sin_verificar_no_es_elegible(self):
        assert es_elegible(farmacia("f1", verificada=False, de_guardia=True), T0, ATENAS) is False

    def test_de_guardia_aunque_este_cerrada(self):
        assert es_elegible(farmacia("f1", horario=HORARIO_CERRADO, de_guardia=True), T0, ATENAS) is True

    def test_cerrada_y_sin_guardia(self):
        assert es_elegible(farmacia("f1", horario=HORARIO_CERRADO), T0, ATENAS) is False

    def test_sin_horario_y_sin_guardia(self):
        assert es_elegible(farmacia("f1", horario=None), T0, ATENAS) is False


class TestCalcularDestinatarios:

    def test_favoritas_primero_respetando_el_orden(self):
        candidatas = [farmacia("a"), farmacia("b"), farmacia("c"), farmacia("d")]
        resultado = calcular_destinatarios(candidatas, {"c", "b"}, T0, ATENAS)
        assert resultado == ["b", "c", "a", "d"]

    def test_usa_la_marca_de_favorita_de_la_candidata(self):
        candidatas = [farmacia("a"), farmacia("b", es_favorita=True)]
        assert calcular_destinatarios(candidatas, set(), T0, ATENAS) == ["b", "a"]

    def test_descarta_las_no_elegibles(self):
        candidatas = [
            farmacia("a", horario=HORARIO_CERRADO),
            farmacia("b", verificada=False),
            farmacia("c"),
        ]
        assert calcular_destinatarios(candidatas, {"a", "b"}, T0, ATENAS) == ["c"]

    def test_sin_ids_repetidos(self):
        candidatas = [farmacia("a"), farmacia("a"), farmacia("b")]
        assert calcular_destinatarios(candidatas, {"a"}, T0, ATENAS) == ["a", "b"]

    def test_lista_vacia_si_nadie_es_alcanzable(self):
        candidatas = [farmacia("a", horario=HORARIO_CERRADO), farmacia("b", tiene_dueno=False)]
        assert calcular_destinatarios(candidatas, set(), T0, ATENAS) == []

    def test_sin_candidatas(self):
        assert calcular_destinatarios([], {"a"}, T0, ATENAS) == []

    def test_tres_elegibles_dos_favoritas(self, candidatas):
        resultado = calcular_destinatarios(candidatas, set(), T0, ATENAS)
        assert resultado == ["farm-b", "farm-c", "farm-a"]
