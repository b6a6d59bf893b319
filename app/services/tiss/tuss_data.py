"""
TUSS Reference Data
Most used TUSS procedure codes for outpatient clinics (table 22)
"""

# (codigo, descricao, grupo, subgrupo, valor_referencia, vigencia_inicio, ativo)
TUSS_CODES = [
    ("10101012", "Consulta em consultório (no horário normal ou preestabelecido)", "Procedimentos clínicos", "Consultas", "150.00", "2024-01-01", True),
    ("10101020", "Consulta em domicílio", "Procedimentos clínicos", "Consultas", "250.00", "2024-01-01", True),
    ("10101039", "Consulta em pronto socorro", "Procedimentos clínicos", "Consultas", "200.00", "2024-01-01", True),
    ("10102019", "Consulta eletiva em consultório (no horário normal)", "Procedimentos clínicos", "Consultas", "150.00", "2024-01-01", True),
    ("10103015", "Teleconsulta médica", "Procedimentos clínicos", "Consultas", "130.00", "2024-01-01", True),
    ("10104011", "Consulta de retorno (até 15 dias)", "Procedimentos clínicos", "Consultas", "100.00", "2024-01-01", True),
    ("20104022", "Consulta/sessão com nutricionista", "Procedimentos clínicos", "Nutrição", "120.00", "2024-01-01", True),
    ("20104030", "Avaliação nutricional completa", "Procedimentos clínicos", "Nutrição", "180.00", "2024-01-01", True),
    ("20104049", "Elaboração de plano alimentar", "Procedimentos clínicos", "Nutrição", "150.00", "2024-01-01", True),
    ("20104103", "Consulta/sessão com psicólogo", "Procedimentos clínicos", "Psicologia", "150.00", "2024-01-01", True),
    ("20104111", "Avaliação psicológica (por sessão)", "Procedimentos clínicos", "Psicologia", "180.00", "2024-01-01", True),
    ("20104120", "Psicoterapia individual (por sessão)", "Procedimentos clínicos", "Psicologia", "160.00", "2024-01-01", True),
    ("20104138", "Orientação/aconselhamento psicológico", "Procedimentos clínicos", "Psicologia", "130.00", "2024-01-01", True),
    ("20104146", "Aplicação de testes psicológicos", "Procedimentos clínicos", "Psicologia", "200.00", "2024-01-01", True),
    ("40301117", "Hemograma completo", "Exames laboratoriais", "Hematologia", "15.00", "2024-01-01", True),
    ("40301125", "Hemograma com contagem de plaquetas", "Exames laboratoriais", "Hematologia", "18.00", "2024-01-01", True),
    ("40301133", "VHS (velocidade de hemossedimentação)", "Exames laboratoriais", "Hematologia", "8.00", "2024-01-01", True),
    ("40301508", "Tempo de protrombina (TAP/INR)", "Exames laboratoriais", "Coagulação", "12.00", "2024-01-01", True),
    ("40301516", "Tempo de tromboplastina parcial (TTPA)", "Exames laboratoriais", "Coagulação", "12.00", "2024-01-01", True),
    ("40301630", "Glicose (jejum)", "Exames laboratoriais", "Bioquímica", "6.00", "2024-01-01", True),
    ("40301648", "Hemoglobina glicada (HbA1c)", "Exames laboratoriais", "Bioquímica", "25.00", "2024-01-01", True),
    ("40301656", "Curva glicêmica (2 dosagens)", "Exames laboratoriais", "Bioquímica", "18.00", "2024-01-01", True),
    ("40302016", "Colesterol total", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302024", "Colesterol HDL", "Exames laboratoriais", "Bioquímica", "10.00", "2024-01-01", True),
    ("40302032", "Colesterol LDL", "Exames laboratoriais", "Bioquímica", "10.00", "2024-01-01", True),
    ("40302040", "Triglicerídeos", "Exames laboratoriais", "Bioquímica", "10.00", "2024-01-01", True),
    ("40302059", "Lipidograma completo", "Exames laboratoriais", "Bioquímica", "35.00", "2024-01-01", True),
    ("40302113", "Ureia", "Exames laboratoriais", "Bioquímica", "6.00", "2024-01-01", True),
    ("40302121", "Creatinina", "Exames laboratoriais", "Bioquímica", "6.00", "2024-01-01", True),
    ("40302130", "Ácido úrico", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302229", "TGO (AST)", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302237", "TGP (ALT)", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302245", "Gama GT (GGT)", "Exames laboratoriais", "Bioquímica", "10.00", "2024-01-01", True),
    ("40302253", "Bilirrubinas total e frações", "Exames laboratoriais", "Bioquímica", "12.00", "2024-01-01", True),
    ("40302261", "Fosfatase alcalina", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302326", "Proteínas totais e frações", "Exames laboratoriais", "Bioquímica", "12.00", "2024-01-01", True),
    ("40302423", "Cálcio", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302431", "Fósforo", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302440", "Magnésio", "Exames laboratoriais", "Bioquímica", "10.00", "2024-01-01", True),
    ("40302512", "Sódio", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302520", "Potássio", "Exames laboratoriais", "Bioquímica", "8.00", "2024-01-01", True),
    ("40302610", "Ferro sérico", "Exames laboratoriais", "Bioquímica", "10.00", "2024-01-01", True),
    ("40302628", "Ferritina", "Exames laboratoriais", "Bioquímica", "25.00", "2024-01-01", True),
    ("40302636", "Transferrina", "Exames laboratoriais", "Bioquímica", "20.00", "2024-01-01", True),
    ("40316017", "TSH (hormônio tireoestimulante)", "Exames laboratoriais", "Hormônios", "25.00", "2024-01-01", True),
    ("40316025", "T4 livre", "Exames laboratoriais", "Hormônios", "25.00", "2024-01-01", True),
    ("40316033", "T3 livre", "Exames laboratoriais", "Hormônios", "25.00", "2024-01-01", True),
    ("40316211", "Vitamina B12", "Exames laboratoriais", "Vitaminas", "30.00", "2024-01-01", True),
    ("40316220", "Vitamina D (25-hidroxi)", "Exames laboratoriais", "Vitaminas", "40.00", "2024-01-01", True),
    ("40316238", "Ácido fólico", "Exames laboratoriais", "Vitaminas", "25.00", "2024-01-01", True),
    ("40311023", "Urina tipo I (EAS)", "Exames laboratoriais", "Urinálise", "8.00", "2024-01-01", True),
    ("40311031", "Urocultura com antibiograma", "Exames laboratoriais", "Urinálise", "25.00", "2024-01-01", True),
    ("40311112", "Exame parasitológico de fezes (EPF)", "Exames laboratoriais", "Coprológicos", "10.00", "2024-01-01", True),
    ("40311120", "Sangue oculto nas fezes", "Exames laboratoriais", "Coprológicos", "12.00", "2024-01-01", True),
    ("40401014", "Radiografia de tórax (PA e perfil)", "Diagnóstico por imagem", "Radiologia", "40.00", "2024-01-01", True),
    ("40401022", "Radiografia de coluna lombar", "Diagnóstico por imagem", "Radiologia", "35.00", "2024-01-01", True),
    ("40901114", "Ultrassonografia de abdômen total", "Diagnóstico por imagem", "Ultrassonografia", "100.00", "2024-01-01", True),
    ("40901122", "Ultrassonografia de tireoide", "Diagnóstico por imagem", "Ultrassonografia", "80.00", "2024-01-01", True),
    ("40901130", "Ultrassonografia pélvica (via abdominal)", "Diagnóstico por imagem", "Ultrassonografia", "80.00", "2024-01-01", True),
    ("40901149", "Ultrassonografia transvaginal", "Diagnóstico por imagem", "Ultrassonografia", "90.00", "2024-01-01", True),
    ("40901157", "Ultrassonografia de mama bilateral", "Diagnóstico por imagem", "Ultrassonografia", "85.00", "2024-01-01", True),
    ("40701018", "Eletrocardiograma de repouso (ECG)", "Diagnóstico por imagem", "Cardiologia", "35.00", "2024-01-01", True),
    ("40701026", "Ecocardiograma transtorácico", "Diagnóstico por imagem", "Cardiologia", "200.00", "2024-01-01", True),
    ("30101012", "Curativo pequeno com ou sem debridamento", "Procedimentos", "Curativos", "30.00", "2024-01-01", True),
    ("30101020", "Curativo médio com ou sem debridamento", "Procedimentos", "Curativos", "50.00", "2024-01-01", True),
    ("30101039", "Curativo grande com ou sem debridamento", "Procedimentos", "Curativos", "80.00", "2024-01-01", True),
    ("30101136", "Retirada de pontos", "Procedimentos", "Curativos", "20.00", "2024-01-01", True),
    ("30101217", "Administração de medicamento injetável (IM/EV)", "Procedimentos", "Aplicações", "15.00", "2024-01-01", True),
    ("30101225", "Nebulização", "Procedimentos", "Aplicações", "20.00", "2024-01-01", True),
    ("30101314", "Verificação de pressão arterial", "Procedimentos", "Monitorização", "10.00", "2024-01-01", True),
    ("30101322", "Glicemia capilar", "Procedimentos", "Monitorização", "12.00", "2024-01-01", True),
    ("30101411", "Coleta de material para exame", "Procedimentos", "Coletas", "15.00", "2024-01-01", True),
]
